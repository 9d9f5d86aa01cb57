"""Configuration subsystem for kcert.

Public API::

    from kcert.config import get_config, KCertConfig

    # At startup (CLI only):
    KCertConfig(config_file="config.yaml")

    # Everywhere else:
    settings = get_config().settings
"""

from kcert.config.kcert_config import (
    ConfigValidationError,
    KCertConfig,
    get_config,
    load_config_data,
    validate_settings,
)
from kcert.config.settings import (
    AcmeSettings,
    ChallengeSettings,
    CloudflareSettings,
    ControllerSettings,
    DnsChallengeSettings,
    HttpChallengeSettings,
    KCertSettings,
    LoggingSettings,
    ResponderSettings,
    Route53Settings,
    SmtpSettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "ChallengeSettings",
    "CloudflareSettings",
    "ConfigValidationError",
    "ControllerSettings",
    "DnsChallengeSettings",
    "HttpChallengeSettings",
    "KCertConfig",
    "KCertSettings",
    "LoggingSettings",
    "ResponderSettings",
    "Route53Settings",
    "SmtpSettings",
    "build_settings",
    "get_config",
    "load_config_data",
    "validate_settings",
]
