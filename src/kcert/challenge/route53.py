"""DNS-01 provider backed by AWS Route53.

The managing hosted zone is the longest zone name that is a suffix of
the domain, among every zone the credentials can list.  Resolved zone
ids are cached per registrable domain for the life of the provider.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from kcert.challenge.base import DnsChallengeProvider
from kcert.challenge.dnsutil import registrable_domain
from kcert.core.errors import ProvisioningError
from kcert.core.types import ProviderKind

if TYPE_CHECKING:
    from kcert.config.settings import DnsChallengeSettings, Route53Settings

log = logging.getLogger(__name__)

TXT_TTL = 60


def quote_txt(value: str) -> str:
    """Wrap a TXT value in double quotes as Route53 requires."""
    return '"' + value.replace('"', '\\"') + '"'


class Route53Provider(DnsChallengeProvider):
    """Publish DNS-01 TXT records through Route53 change batches.

    Parameters
    ----------
    settings:
        Shared DNS-01 settings.
    route53:
        Credentials and region.  Without explicit keys boto3's default
        credential chain (IRSA, instance profile, env) is used.
    client:
        Optional pre-built boto3 Route53 client (injected by tests).

    """

    kind = ProviderKind.ROUTE53

    def __init__(
        self,
        settings: DnsChallengeSettings | None,
        route53: Route53Settings,
        *,
        client: Any = None,  # noqa: ANN401
        stop_event: threading.Event | None = None,
    ) -> None:
        super().__init__(settings, stop_event=stop_event)
        if client is None:
            client = boto3.client(
                "route53",
                aws_access_key_id=route53.access_key_id,
                aws_secret_access_key=route53.secret_access_key,
                region_name=route53.region,
            )
        self._client = client
        self._zone_cache: dict[str, str] = {}
        self._lock = threading.Lock()

    # -- zone resolution --------------------------------------------------

    def find_zone_id(self, domain: str) -> str:
        """Return the hosted zone id managing *domain*.

        Raises
        ------
        ProvisioningError
            If no visible hosted zone is a suffix of *domain*.

        """
        cache_key = registrable_domain(domain)
        with self._lock:
            cached = self._zone_cache.get(cache_key)
        if cached is not None:
            return cached

        best_name = ""
        best_id: str | None = None
        try:
            paginator = self._client.get_paginator("list_hosted_zones")
            for page in paginator.paginate():
                for zone in page.get("HostedZones", []):
                    name = zone["Name"].rstrip(".").lower()
                    matches = domain == name or domain.endswith("." + name)
                    if matches and len(name) > len(best_name):
                        best_name, best_id = name, zone["Id"]
        except (BotoCoreError, ClientError) as exc:
            msg = f"Unable to list Route53 hosted zones: {exc}"
            raise ProvisioningError(msg) from exc

        if best_id is None:
            msg = f"No Route53 hosted zone found for {domain}"
            raise ProvisioningError(msg)

        log.debug("Resolved Route53 zone %s (%s) for %s", best_name, best_id, domain)
        with self._lock:
            self._zone_cache[cache_key] = best_id
        return best_id

    # -- record operations ------------------------------------------------

    def _change(self, action: str, domain: str, record_name: str, record_value: str) -> None:
        self._client.change_resource_record_sets(
            HostedZoneId=self.find_zone_id(domain),
            ChangeBatch={
                "Comment": f"kcert ACME challenge for {domain}",
                "Changes": [
                    {
                        "Action": action,
                        "ResourceRecordSet": {
                            "Name": record_name,
                            "Type": "TXT",
                            "TTL": TXT_TTL,
                            "ResourceRecords": [{"Value": quote_txt(record_value)}],
                        },
                    },
                ],
            },
        )

    def create_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        try:
            self._change("UPSERT", domain, record_name, record_value)
        except (BotoCoreError, ClientError) as exc:
            msg = f"Failed to create Route53 TXT record {record_name}: {exc}"
            raise ProvisioningError(msg) from exc
        log.info("Created Route53 TXT record %s", record_name)

    def delete_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        try:
            self._change("DELETE", domain, record_name, record_value)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            if error.get("Code") == "InvalidChangeBatch" and "not found" in error.get("Message", ""):
                log.warning("Route53 TXT record %s was already deleted", record_name)
                return
            msg = f"Failed to delete Route53 TXT record {record_name}: {exc}"
            raise ProvisioningError(msg) from exc
        except BotoCoreError as exc:
            msg = f"Failed to delete Route53 TXT record {record_name}: {exc}"
            raise ProvisioningError(msg) from exc
        log.info("Deleted Route53 TXT record %s", record_name)
