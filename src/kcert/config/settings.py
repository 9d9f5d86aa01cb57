"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
Each section has an explicit ``_build_*`` function mapping raw config
data onto its dataclass; nothing is marshalled by reflection.

Access pattern::

    from kcert.config import get_config

    acme = get_config().settings.acme
    print(acme.directory_url, acme.renewal_threshold_days)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"


def _as_tuple(value: Any) -> tuple[str, ...]:  # noqa: ANN401
    """Accept a YAML list or a comma-separated string."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    return tuple(str(v).strip() for v in value if str(v).strip())


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """ACME account, directory and polling configuration."""

    directory_url: str
    email: str
    key: str | None
    terms_accepted: bool
    eab_key_id: str | None
    eab_hmac_key: str | None
    validation_wait_seconds: float
    validation_retries: int
    renewal_threshold_days: int
    leaf_key_type: str
    request_timeout_seconds: int


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d.get("directory_url", LETS_ENCRYPT_DIRECTORY),
        email=d.get("email", ""),
        key=d.get("key") or None,
        terms_accepted=d.get("terms_accepted", False),
        eab_key_id=d.get("eab_key_id") or None,
        eab_hmac_key=d.get("eab_hmac_key") or None,
        validation_wait_seconds=d.get("validation_wait_seconds", 10),
        validation_retries=d.get("validation_retries", 60),
        renewal_threshold_days=d.get("renewal_threshold_days", 30),
        leaf_key_type=d.get("leaf_key_type", "rsa"),
        request_timeout_seconds=d.get("request_timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControllerSettings:
    """Where kcert runs and what it watches."""

    namespace: str
    service_name: str
    service_port: int
    ingress_name: str
    label_value: str
    namespace_constraints: tuple[str, ...]
    watch_ingresses: bool
    watch_configmaps: bool
    include_managed: bool
    auto_renewal: bool
    renewal_check_hours: float
    initial_backoff_seconds: float
    max_backoff_seconds: float
    kubeconfig: str | None


def _build_controller(data: dict | None) -> ControllerSettings:
    d = data or {}
    return ControllerSettings(
        namespace=d.get("namespace", "default"),
        service_name=d.get("service_name", "kcert"),
        service_port=d.get("service_port", 80),
        ingress_name=d.get("ingress_name", "kcert"),
        label_value=d.get("label_value", "managed"),
        namespace_constraints=_as_tuple(d.get("namespace_constraints")),
        watch_ingresses=d.get("watch_ingresses", True),
        watch_configmaps=d.get("watch_configmaps", True),
        include_managed=d.get("include_managed", True),
        auto_renewal=d.get("auto_renewal", True),
        renewal_check_hours=d.get("renewal_check_hours", 6),
        initial_backoff_seconds=d.get("initial_backoff_seconds", 10),
        max_backoff_seconds=d.get("max_backoff_seconds", 3600),
        kubeconfig=d.get("kubeconfig"),
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpChallengeSettings:
    """HTTP-01 temporary ingress settings."""

    enabled: bool
    ingress_class_name: str | None
    annotations: dict[str, str]
    labels: dict[str, str]
    propagation_retries: int
    propagation_check_interval_seconds: float
    skip_propagation_check: bool
    propagation_wait_seconds: float


@dataclass(frozen=True)
class DnsChallengeSettings:
    """DNS-01 publication settings shared by both DNS providers."""

    provider: str
    propagation_seconds: float
    verify_propagation: bool
    verify_retries: int
    resolvers: tuple[str, ...]


@dataclass(frozen=True)
class Route53Settings:
    access_key_id: str | None
    secret_access_key: str | None
    region: str


@dataclass(frozen=True)
class CloudflareSettings:
    api_token: str
    account_id: str | None
    api_url: str


@dataclass(frozen=True)
class ChallengeSettings:
    """Aggregate challenge configuration."""

    preferred_type: str
    http: HttpChallengeSettings
    dns: DnsChallengeSettings
    route53: Route53Settings
    cloudflare: CloudflareSettings


def _build_challenge(data: dict | None) -> ChallengeSettings:
    d = data or {}
    h = d.get("http") or {}
    dn = d.get("dns") or {}
    r = d.get("route53") or {}
    cf = d.get("cloudflare") or {}
    return ChallengeSettings(
        preferred_type=d.get("preferred_type", "http-01"),
        http=HttpChallengeSettings(
            enabled=h.get("enabled", True),
            ingress_class_name=h.get("ingress_class_name"),
            annotations=dict(h.get("annotations") or {}),
            labels=dict(h.get("labels") or {}),
            propagation_retries=h.get("propagation_retries", 30),
            propagation_check_interval_seconds=h.get("propagation_check_interval_seconds", 2),
            skip_propagation_check=h.get("skip_propagation_check", False),
            propagation_wait_seconds=h.get("propagation_wait_seconds", 10),
        ),
        dns=DnsChallengeSettings(
            provider=dn.get("provider", "none"),
            propagation_seconds=dn.get("propagation_seconds", 10),
            verify_propagation=dn.get("verify_propagation", False),
            verify_retries=dn.get("verify_retries", 30),
            resolvers=_as_tuple(dn.get("resolvers")),
        ),
        route53=Route53Settings(
            access_key_id=r.get("access_key_id") or None,
            secret_access_key=r.get("secret_access_key") or None,
            region=r.get("region", "us-east-1"),
        ),
        cloudflare=CloudflareSettings(
            api_token=cf.get("api_token", ""),
            account_id=cf.get("account_id") or None,
            api_url=cf.get("api_url", "https://api.cloudflare.com/client/v4/"),
        ),
    )


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """SMTP outbound email delivery settings."""

    enabled: bool
    host: str
    port: int
    username: str
    password: str
    use_tls: bool
    from_address: str
    to: tuple[str, ...]
    notify_success: bool
    timeout_seconds: int


def _build_smtp(data: dict | None) -> SmtpSettings:
    d = data or {}
    return SmtpSettings(
        enabled=d.get("enabled", False),
        host=d.get("host", ""),
        port=d.get("port", 587),
        username=d.get("username", ""),
        password=d.get("password", ""),
        use_tls=d.get("use_tls", True),
        from_address=d.get("from_address", ""),
        to=_as_tuple(d.get("to")),
        notify_success=d.get("notify_success", True),
        timeout_seconds=d.get("timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# Responder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResponderSettings:
    """Bind address of the HTTP-01 token responder."""

    bind: str
    port: int


def _build_responder(data: dict | None) -> ResponderSettings:
    d = data or {}
    return ResponderSettings(
        bind=d.get("bind", "0.0.0.0"),  # noqa: S104
        port=d.get("port", 8080),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KCertSettings:
    acme: AcmeSettings
    controller: ControllerSettings
    challenge: ChallengeSettings
    smtp: SmtpSettings
    responder: ResponderSettings
    logging: LoggingSettings


def build_settings(data: dict) -> KCertSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`KCertConfig` initialization after
    environment-variable resolution.
    """
    return KCertSettings(
        acme=_build_acme(data.get("acme")),
        controller=_build_controller(data.get("kcert")),
        challenge=_build_challenge(data.get("challenge")),
        smtp=_build_smtp(data.get("smtp")),
        responder=_build_responder(data.get("responder")),
        logging=_build_logging(data.get("logging")),
    )
