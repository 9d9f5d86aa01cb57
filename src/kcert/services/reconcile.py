"""Reconciliation controller.

Aggregates desired certificates from two independent declarations:

* ingresses labelled ``kcert.dev/ingress=<label>``: every ``spec.tls``
  block names a secret and its hosts;
* config maps labelled ``kcert.dev/cert-request=request``: the config
  map's name is the secret name and its ``hosts`` key holds a
  comma-separated host list.

Hosts are unioned per ``(namespace, secret)``.  Each desired secret is
then checked and renewed when missing, near expiry, or issued for a
different host set.  A failure for one secret never stops the pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from kcert.cluster.client import TLS_CERT_KEY, secret_value
from kcert.core.certs import dedupe_hosts, parse_certificate
from kcert.core.errors import FailureKind, RenewalError
from kcert.services.issuance import RenewalRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from kcert.cluster.client import ClusterClient
    from kcert.services.issuance import IssuanceOrchestrator, RenewalOutcome
    from kcert.services.notification import Notifier

log = logging.getLogger(__name__)

HOSTS_KEY = "hosts"

SecretKey = tuple[str, str]


# ---------------------------------------------------------------------------
# Desired state
# ---------------------------------------------------------------------------


def ingress_certs(ingresses: Iterable[Any]) -> Iterator[tuple[str, str, list[str]]]:
    """Yield ``(namespace, secret, hosts)`` for every TLS block of *ingresses*."""
    for ingress in ingresses:
        namespace = ingress.metadata.namespace
        spec = ingress.spec
        for tls in (spec.tls if spec is not None else None) or []:
            if not tls.secret_name or not tls.hosts:
                log.warning(
                    "Ingress %s/%s has a TLS block without secret or hosts",
                    namespace,
                    ingress.metadata.name,
                )
                continue
            yield namespace, tls.secret_name, list(tls.hosts)


def config_map_certs(config_maps: Iterable[Any]) -> Iterator[tuple[str, str, list[str]]]:
    """Yield ``(namespace, secret, hosts)`` for every certificate-request config map."""
    for config_map in config_maps:
        namespace = config_map.metadata.namespace
        name = config_map.metadata.name
        host_list = (config_map.data or {}).get(HOSTS_KEY)
        if not host_list:
            log.error("ConfigMap %s/%s does not have a '%s' entry", namespace, name, HOSTS_KEY)
            continue
        hosts = [h.strip() for h in host_list.split(",") if h.strip()]
        if not hosts:
            log.error("ConfigMap %s/%s does not contain a list of hosts", namespace, name)
            continue
        yield namespace, name, hosts


def aggregate(*sources: Iterable[tuple[str, str, Iterable[str]]]) -> dict[SecretKey, list[str]]:
    """Merge declarations keyed by ``(namespace, secret)``, unioning hosts."""
    merged: dict[SecretKey, list[str]] = {}
    for source in sources:
        for namespace, secret_name, hosts in source:
            key = (namespace, secret_name)
            merged[key] = dedupe_hosts([*merged.get(key, []), *hosts])
    return merged


# ---------------------------------------------------------------------------
# Renewal necessity
# ---------------------------------------------------------------------------


def needs_renewal(
    secret: Any,  # noqa: ANN401
    hosts: Iterable[str],
    threshold: timedelta,
    now: datetime,
) -> str | None:
    """Return why *secret* must be (re)issued for *hosts*, or ``None``.

    Renewal is required when the secret does not exist, holds no
    parseable certificate, has less than *threshold* of validity left
    at *now*, or covers a different host set.
    """
    if secret is None:
        return "secret does not exist"

    cert_pem = secret_value(secret, TLS_CERT_KEY)
    if not cert_pem:
        return "secret has no certificate"
    try:
        info = parse_certificate(cert_pem)
    except ValueError:
        return "certificate cannot be parsed"

    if info.not_after - now < threshold:
        return f"certificate expires {info.not_after.isoformat()}"

    desired = frozenset(dedupe_hosts(list(hosts)))
    if info.hosts != desired:
        return (
            f"certificate hosts [{', '.join(sorted(info.hosts))}] differ from "
            f"[{', '.join(sorted(desired))}]"
        )
    return None


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


@dataclass
class ReconcileReport:
    """What one reconciliation pass did."""

    renewed: list[RenewalOutcome] = field(default_factory=list)
    up_to_date: list[SecretKey] = field(default_factory=list)
    failed: list[RenewalError] = field(default_factory=list)
    cancelled: bool = False

    @property
    def retryable_failures(self) -> list[RenewalError]:
        return [e for e in self.failed if e.retryable]


class ReconciliationController:
    """Decide which secrets need issuance and run it, one secret at a time.

    Parameters
    ----------
    cluster:
        Source of ingresses, config maps and secrets.
    orchestrator:
        Runs one issuance.
    notifier:
        Receives success and failure notifications.
    threshold_days:
        Renew when fewer days of validity remain.
    include_managed:
        Also check secrets kcert manages that no longer have a
        declaration, keeping their current host set.
    clock:
        Returns the current UTC time (injected by tests).

    """

    def __init__(
        self,
        cluster: ClusterClient,
        orchestrator: IssuanceOrchestrator,
        notifier: Notifier,
        *,
        threshold_days: int = 30,
        include_managed: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._cluster = cluster
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._threshold = timedelta(days=threshold_days)
        self._include_managed = include_managed
        self._clock = clock or (lambda: datetime.now(UTC))

    def desired_certificates(self) -> dict[SecretKey, list[str]]:
        """Aggregate every declared certificate in the cluster."""
        return aggregate(
            ingress_certs(self._cluster.list_ingresses()),
            config_map_certs(self._cluster.list_config_maps()),
        )

    def _managed_certificates(self, known: dict[SecretKey, list[str]]) -> Iterator[tuple[str, str, list[str]]]:
        for secret in self._cluster.list_managed_secrets():
            key = (secret.metadata.namespace, secret.metadata.name)
            if key in known:
                continue
            cert_pem = secret_value(secret, TLS_CERT_KEY)
            if not cert_pem:
                continue
            try:
                hosts = sorted(parse_certificate(cert_pem).hosts)
            except ValueError:
                log.warning("Managed secret %s/%s holds no parseable certificate", *key)
                continue
            yield key[0], key[1], hosts

    def check(self) -> ReconcileReport:
        """Run one reconciliation pass over every desired secret."""
        desired = self.desired_certificates()
        if self._include_managed:
            desired = aggregate(desired_items(desired), self._managed_certificates(desired))
        log.info("Reconciling %d certificate(s)", len(desired))

        report = ReconcileReport()
        for (namespace, secret_name), hosts in desired.items():
            try:
                outcome = self.renew_if_needed(namespace, secret_name, hosts)
            except RenewalError as err:
                if err.kind == FailureKind.CANCELLED:
                    log.info("Reconciliation interrupted by shutdown")
                    report.cancelled = True
                    break
                report.failed.append(err)
                continue

            if outcome is None:
                report.up_to_date.append((namespace, secret_name))
            else:
                report.renewed.append(outcome)

        log.info(
            "Reconciliation finished: %d renewed, %d up to date, %d failed",
            len(report.renewed),
            len(report.up_to_date),
            len(report.failed),
        )
        return report

    def renew_if_needed(
        self,
        namespace: str,
        secret_name: str,
        hosts: list[str],
    ) -> RenewalOutcome | None:
        """Renew one secret when required.

        Returns the outcome of the issuance, or ``None`` when the
        secret is already up to date.

        Raises
        ------
        RenewalError
            When checking or issuing fails; the notifier has already
            been told (except for cancellation).

        """
        try:
            secret = self._cluster.read_secret(namespace, secret_name)
            reason = needs_renewal(secret, hosts, self._threshold, self._clock())
        except Exception as exc:
            log.exception("Unable to inspect secret %s/%s", namespace, secret_name)
            error = RenewalError(namespace, secret_name, [], exc)
            self._notifier.renewal_failed(error)
            raise error from exc

        if reason is None:
            log.debug("Secret %s/%s is up to date", namespace, secret_name)
            return None

        log.info("Renewing %s/%s: %s", namespace, secret_name, reason)
        return self.renew(namespace, secret_name, hosts)

    def renew(self, namespace: str, secret_name: str, hosts: list[str]) -> RenewalOutcome:
        """Unconditionally issue for one secret and notify the result."""
        request = RenewalRequest.create(namespace, secret_name, hosts)
        try:
            outcome = self._orchestrator.renew(request)
        except RenewalError as err:
            if err.kind != FailureKind.CANCELLED:
                log.error("%s (retryable: %s)", err, err.retryable)
                self._notifier.renewal_failed(err)
            raise

        log.info("Renewed %s/%s until %s", namespace, secret_name, outcome.not_after)
        self._notifier.renewal_succeeded(outcome)
        return outcome


def desired_items(desired: dict[SecretKey, list[str]]) -> Iterator[tuple[str, str, list[str]]]:
    for (namespace, secret_name), hosts in desired.items():
        yield namespace, secret_name, hosts
