"""Enumerated types used across kcert.

All enums inherit from ``StrEnum`` so their ``.value`` is the exact
string seen on the ACME wire or in the configuration file.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


class ProviderKind(StrEnum):
    """Closed set of challenge provider implementations."""

    HTTP = "http"
    ROUTE53 = "route53"
    CLOUDFLARE = "cloudflare"


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class IssuanceState(StrEnum):
    INIT = "init"
    ACCOUNT_READY = "account_ready"
    ORDER_CREATED = "order_created"
    AUTHORIZING = "authorizing"
    FINALIZING = "finalizing"
    CERT_READY = "cert_ready"
    PERSISTED = "persisted"
    FAILED = "failed"


class LeafKeyType(StrEnum):
    RSA = "rsa"
    EC = "ec"
