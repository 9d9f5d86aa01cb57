"""kcert configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    KCertConfig(config_file="/etc/kcert/config.yaml")

    # 2. Any module retrieves it afterwards
    from kcert.config import get_config
    cfg = get_config()
    cfg.settings.acme.directory_url  # typed access
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from kcert.config.settings import KCertSettings, build_settings
from kcert.core.errors import ConfigurationError
from kcert.core.types import ChallengeType, LeafKeyType, ProviderKind

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_DNS_PROVIDERS = frozenset({ProviderKind.ROUTE53.value, ProviderKind.CLOUDFLARE.value, "none"})
_LOG_FORMATS = frozenset({"json", "text"})

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: KCertConfig | None = None


def get_config() -> KCertConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`KCertConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "KCertConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(ConfigurationError):
    """Raised when validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def load_config_data(config_file: str | Path) -> dict:
    """Read a YAML or JSON config file and resolve env references."""
    path = Path(config_file)
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
    except OSError as exc:
        msg = f"Cannot read configuration file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Configuration file {path} is not valid: {exc}"
        raise ConfigurationError(msg) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Configuration file {path} must contain a mapping at the top level"
        raise ConfigurationError(msg)

    _resolve_env_vars(data)
    return data


# ---------------------------------------------------------------------------
# Cross-field validation
# ---------------------------------------------------------------------------


def validate_settings(settings: KCertSettings) -> list[str]:  # noqa: C901, PLR0912
    """Check *settings* for problems a single field cannot express.

    Returns the list of warnings; raises :class:`ConfigValidationError`
    with every error found.
    """
    errors: list[str] = []
    warnings: list[str] = []
    acme = settings.acme
    challenge = settings.challenge
    controller = settings.controller

    if not acme.directory_url.startswith(("https://", "http://")):
        errors.append(f"acme.directory_url must be an http(s) URL, got '{acme.directory_url}'")
    if not acme.terms_accepted:
        warnings.append("acme.terms_accepted is false; most ACME servers will refuse the account")
    if not acme.email:
        warnings.append("acme.email is empty; the account will have no contact")
    if acme.validation_retries < 1:
        errors.append("acme.validation_retries must be at least 1")
    if acme.validation_wait_seconds < 0:
        errors.append("acme.validation_wait_seconds must not be negative")
    if acme.renewal_threshold_days < 0:
        errors.append("acme.renewal_threshold_days must not be negative")
    if acme.leaf_key_type not in {t.value for t in LeafKeyType}:
        errors.append(f"acme.leaf_key_type must be 'rsa' or 'ec', got '{acme.leaf_key_type}'")
    if bool(acme.eab_key_id) != bool(acme.eab_hmac_key):
        errors.append("acme.eab_key_id and acme.eab_hmac_key must be set together")

    if challenge.preferred_type not in {t.value for t in ChallengeType}:
        errors.append(
            f"challenge.preferred_type must be 'http-01' or 'dns-01', "
            f"got '{challenge.preferred_type}'",
        )

    dns_provider = challenge.dns.provider
    if dns_provider not in _DNS_PROVIDERS:
        errors.append(
            f"challenge.dns.provider must be one of {sorted(_DNS_PROVIDERS)}, got '{dns_provider}'",
        )
    if dns_provider == ProviderKind.CLOUDFLARE and not challenge.cloudflare.api_token:
        errors.append("challenge.cloudflare.api_token is required when the DNS provider is cloudflare")
    if dns_provider == ProviderKind.ROUTE53 and bool(challenge.route53.access_key_id) != bool(
        challenge.route53.secret_access_key,
    ):
        errors.append(
            "challenge.route53.access_key_id and secret_access_key must be set together",
        )

    if not challenge.http.enabled and dns_provider == "none":
        errors.append("No challenge provider is enabled (enable challenge.http or a DNS provider)")
    if challenge.preferred_type == ChallengeType.DNS_01 and dns_provider == "none":
        warnings.append("challenge.preferred_type is dns-01 but no DNS provider is configured")

    if controller.initial_backoff_seconds <= 0:
        errors.append("kcert.initial_backoff_seconds must be positive")
    if controller.max_backoff_seconds < controller.initial_backoff_seconds:
        errors.append("kcert.max_backoff_seconds must be >= initial_backoff_seconds")
    if controller.renewal_check_hours <= 0:
        errors.append("kcert.renewal_check_hours must be positive")

    if settings.smtp.enabled:
        if not settings.smtp.host:
            errors.append("smtp.host is required when smtp is enabled")
        if not settings.smtp.from_address:
            errors.append("smtp.from_address is required when smtp is enabled")
        if not settings.smtp.to and not acme.email:
            errors.append("smtp.to (or acme.email) is required when smtp is enabled")

    if settings.logging.format not in _LOG_FORMATS:
        errors.append(f"logging.format must be 'json' or 'text', got '{settings.logging.format}'")

    if errors:
        raise ConfigValidationError(errors)
    return warnings


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class KCertConfig:
    """Central configuration for kcert.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        global _instance  # noqa: PLW0603

        self._source = str(config_file)
        self.data = load_config_data(config_file)
        self._settings = build_settings(self.data)

        for w in validate_settings(self._settings):
            log.warning("Config warning: %s", w)

        _instance = self

    @property
    def settings(self) -> KCertSettings:
        """The typed, frozen settings tree."""
        return self._settings

    def reload_settings(self) -> KCertSettings:
        """Re-read the config file and rebuild settings.

        Does not replace the singleton's settings; returns a fresh tree
        for the caller to apply.
        """
        settings = build_settings(load_config_data(self._source))
        validate_settings(settings)
        return settings

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<KCertConfig config_file={self._source}>"
