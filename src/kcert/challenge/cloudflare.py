"""DNS-01 provider backed by the Cloudflare v4 REST API.

Zones are looked up by the registrable domain (the last two labels);
resolved zone ids are cached for the life of the provider.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import requests

from kcert.challenge.base import DnsChallengeProvider
from kcert.challenge.dnsutil import registrable_domain
from kcert.core.errors import ProvisioningError
from kcert.core.types import ProviderKind

if TYPE_CHECKING:
    from kcert.config.settings import CloudflareSettings, DnsChallengeSettings

log = logging.getLogger(__name__)

TXT_TTL = 120
_TIMEOUT = 30


class CloudflareProvider(DnsChallengeProvider):
    """Publish DNS-01 TXT records through Cloudflare.

    Parameters
    ----------
    settings:
        Shared DNS-01 settings.
    cloudflare:
        API token and base URL.
    session:
        Optional :class:`requests.Session` (injected by tests).

    """

    kind = ProviderKind.CLOUDFLARE

    def __init__(
        self,
        settings: DnsChallengeSettings | None,
        cloudflare: CloudflareSettings,
        *,
        session: requests.Session | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        super().__init__(settings, stop_event=stop_event)
        self._base_url = cloudflare.api_url.rstrip("/") + "/"
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {cloudflare.api_token}",
                "Accept": "application/json",
            },
        )
        self._zone_cache: dict[str, str] = {}
        self._lock = threading.Lock()

    # -- HTTP -------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = urljoin(self._base_url, path)
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=_TIMEOUT,
            )
        except requests.RequestException as exc:
            msg = f"Cloudflare {method} {path} failed: {exc}"
            raise ProvisioningError(msg) from exc

        if not response.ok:
            msg = f"Cloudflare {method} {path} returned HTTP {response.status_code}: {response.text}"
            raise ProvisioningError(msg)
        return response.json()

    # -- zone resolution --------------------------------------------------

    def find_zone_id(self, domain: str) -> str:
        """Return the zone id for *domain*'s registrable domain."""
        zone_name = registrable_domain(domain)
        with self._lock:
            cached = self._zone_cache.get(zone_name)
        if cached is not None:
            return cached

        body = self._request("GET", "zones", params={"name": zone_name})
        results = body.get("result") or []
        if not results:
            msg = f"No Cloudflare zone found for {domain} (looked up {zone_name})"
            raise ProvisioningError(msg)

        zone_id = results[0]["id"]
        log.info("Found Cloudflare zone %s for %s", zone_id, zone_name)
        with self._lock:
            self._zone_cache[zone_name] = zone_id
        return zone_id

    # -- record operations ------------------------------------------------

    def create_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        zone_id = self.find_zone_id(domain)
        self._request(
            "POST",
            f"zones/{zone_id}/dns_records",
            payload={
                "type": "TXT",
                "name": record_name,
                "content": record_value,
                "ttl": TXT_TTL,
            },
        )
        log.info("Created Cloudflare TXT record %s", record_name)

    def delete_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        zone_id = self.find_zone_id(domain)
        body = self._request(
            "GET",
            f"zones/{zone_id}/dns_records",
            params={"type": "TXT", "name": record_name, "content": record_value},
        )
        records = body.get("result") or []
        if not records:
            log.warning("Cloudflare TXT record %s was already deleted", record_name)
            return

        for record in records:
            self._request("DELETE", f"zones/{zone_id}/dns_records/{record['id']}")
            log.info("Deleted Cloudflare TXT record %s (%s)", record_name, record["id"])
