"""Error taxonomy for kcert plus the RFC 8555 ACME error-type URNs.

Every failure that can end an issuance maps onto one
:class:`FailureKind`, so callers decide between retrying and giving up
without inspecting message text.

Usage::

    raise ProvisioningError(f"No usable challenge for {domain}")
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

# ---------------------------------------------------------------------------
# RFC 8555 §6.7: ACME error-type URNs
# ---------------------------------------------------------------------------
_P = "urn:ietf:params:acme:error:"

ACCOUNT_DOES_NOT_EXIST = _P + "accountDoesNotExist"
BAD_CSR = _P + "badCSR"
BAD_NONCE = _P + "badNonce"
BAD_PUBLIC_KEY = _P + "badPublicKey"
BAD_SIGNATURE_ALGORITHM = _P + "badSignatureAlgorithm"
CAA = _P + "caa"
CONNECTION = _P + "connection"
DNS = _P + "dns"
EXTERNAL_ACCOUNT_REQUIRED = _P + "externalAccountRequired"
INCORRECT_RESPONSE = _P + "incorrectResponse"
MALFORMED = _P + "malformed"
ORDER_NOT_READY = _P + "orderNotReady"
RATE_LIMITED = _P + "rateLimited"
REJECTED_IDENTIFIER = _P + "rejectedIdentifier"
SERVER_INTERNAL = _P + "serverInternal"
UNAUTHORIZED = _P + "unauthorized"
USER_ACTION_REQUIRED = _P + "userActionRequired"

# Problem types worth another attempt on the next reconciliation pass
_RETRYABLE_PROBLEMS = frozenset(
    {
        BAD_NONCE,
        CONNECTION,
        DNS,
        RATE_LIMITED,
        SERVER_INTERNAL,
    }
)

_SERVER_ERROR_STATUS = 500


# ---------------------------------------------------------------------------
# Failure classification
# ---------------------------------------------------------------------------


class FailureKind(StrEnum):
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    PROVISIONING = "provisioning"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"

    @property
    def retryable(self) -> bool:
        """Whether a later attempt can succeed without operator action."""
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {
        FailureKind.TIMEOUT,
        FailureKind.PROVISIONING,
        FailureKind.PERSISTENCE,
        FailureKind.UNEXPECTED,
    }
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class KCertError(Exception):
    """Base class for every error raised by kcert.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient.  ``None`` defers to the
        class's :attr:`kind`.

    """

    kind: FailureKind = FailureKind.UNEXPECTED

    def __init__(self, detail: str, *, retryable: bool | None = None) -> None:
        self.detail = detail
        self.retryable = self.kind.retryable if retryable is None else retryable
        super().__init__(detail)


class ProtocolError(KCertError):
    """Non-2xx response from the ACME server.

    Parameters
    ----------
    status:
        HTTP status code.
    body:
        Raw response body (usually an RFC 7807 problem document).
    problem_type:
        The ``type`` URN of the problem document, when present.

    """

    kind = FailureKind.PROTOCOL

    def __init__(
        self,
        status: int,
        body: str,
        *,
        problem_type: str | None = None,
        url: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.problem_type = problem_type
        self.url = url
        retryable = problem_type in _RETRYABLE_PROBLEMS or status >= _SERVER_ERROR_STATUS
        target = f" from {url}" if url else ""
        super().__init__(
            f"ACME request failed with HTTP {status}{target}: {body}",
            retryable=retryable,
        )

    @classmethod
    def from_response(cls, response: Any) -> ProtocolError:  # noqa: ANN401
        """Build from a :class:`requests.Response` carrying a problem document."""
        problem_type = None
        try:
            doc = response.json()
        except ValueError:
            doc = None
        if isinstance(doc, dict):
            problem_type = doc.get("type")
        return cls(
            response.status_code,
            response.text,
            problem_type=problem_type,
            url=getattr(response, "url", None),
        )


class AuthorizationInvalid(KCertError):
    """The ACME server marked an authorization or order ``invalid``."""

    kind = FailureKind.PROTOCOL

    def __init__(self, detail: str) -> None:
        super().__init__(detail, retryable=False)


class ValidationTimeout(KCertError, TimeoutError):
    """An authorization or order never reached ``valid`` within the retry budget."""

    kind = FailureKind.TIMEOUT


class ProvisioningError(KCertError):
    """Challenge evidence could not be published or removed."""

    kind = FailureKind.PROVISIONING


class PropagationTimeout(ProvisioningError):
    """Published challenge evidence never became reachable."""


class PersistenceError(KCertError):
    """Writing the certificate secret failed."""

    kind = FailureKind.PERSISTENCE


class ConfigurationError(KCertError):
    """Required settings are missing or invalid."""

    kind = FailureKind.CONFIGURATION


class Cancelled(KCertError):
    """The operation was interrupted by shutdown."""

    kind = FailureKind.CANCELLED


def classify(exc: BaseException) -> FailureKind:
    """Return the :class:`FailureKind` for an arbitrary exception."""
    if isinstance(exc, KCertError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return FailureKind.TIMEOUT
    return FailureKind.UNEXPECTED


class RenewalError(Exception):
    """Terminal issuance failure tagged with the target secret.

    This is the only exception the issuance orchestrator lets escape.
    It carries the full transcript of the attempt and the original
    exception as ``cause`` (also chained as ``__cause__``).
    """

    def __init__(
        self,
        namespace: str,
        secret_name: str,
        transcript: Sequence[str],
        cause: BaseException,
    ) -> None:
        self.namespace = namespace
        self.secret_name = secret_name
        self.transcript = list(transcript)
        self.cause = cause
        self.kind = classify(cause)
        self.retryable = getattr(cause, "retryable", self.kind.retryable)
        super().__init__(
            f"Renewal of secret [{namespace}:{secret_name}] failed ({self.kind.value}): {cause}",
        )
