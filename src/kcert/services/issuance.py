"""Issuance orchestrator: one certificate through the ACME state machine.

Sequence per :class:`RenewalRequest`::

    Init -> AccountReady -> OrderCreated -> Authorizing (x N)
         -> Finalizing -> CertReady -> Persisted

Any failure moves to ``Failed`` and surfaces as a single
:class:`~kcert.core.errors.RenewalError` carrying the transcript of the
attempt.  The target secret is written only after a complete, parseable
chain has been downloaded.

Each issuance builds its own :class:`~kcert.acme.client.AcmeClient`, so
nonce threading is confined to the issuance.  Issuances for the same
secret are serialized through :class:`IssuanceLocks`; different secrets
may proceed in parallel.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kcert.acme.client import AcmeClient
from kcert.core.certs import (
    build_csr,
    dedupe_hosts,
    generate_leaf_key,
    parse_certificate,
    private_key_pem,
)
from kcert.core.errors import (
    AuthorizationInvalid,
    Cancelled,
    ProvisioningError,
    RenewalError,
    ValidationTimeout,
)
from kcert.core.jws import key_authorization, public_jwk
from kcert.core.types import (
    AuthorizationStatus,
    ChallengeType,
    IssuanceState,
    LeafKeyType,
    OrderStatus,
)
from kcert.logging import TranscriptLogger, renewal_context

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Sequence
    from datetime import datetime

    from cryptography.hazmat.primitives.asymmetric import ec

    from kcert.acme.models import Order
    from kcert.challenge.base import ChallengeProvider, ProvisioningState
    from kcert.challenge.registry import ProviderRegistry
    from kcert.cluster.client import ClusterClient
    from kcert.config.settings import AcmeSettings

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Requests and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalRequest:
    """One issuance attempt: target secret plus the deduplicated host set."""

    namespace: str
    secret_name: str
    hosts: tuple[str, ...]

    @classmethod
    def create(cls, namespace: str, secret_name: str, hosts: Sequence[str]) -> RenewalRequest:
        return cls(namespace, secret_name, tuple(dedupe_hosts(hosts)))


@dataclass
class RenewalOutcome:
    """Result of one issuance, finalized exactly once."""

    namespace: str
    secret_name: str
    hosts: tuple[str, ...]
    success: bool = False
    state: IssuanceState = IssuanceState.INIT
    transcript: list[str] = field(default_factory=list)
    error: BaseException | None = None
    not_after: datetime | None = None


class IssuanceLocks:
    """Per-secret mutual exclusion for issuance."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, namespace: str, secret_name: str) -> Generator[None, None, None]:
        with self._guard:
            lock = self._locks.setdefault((namespace, secret_name), threading.Lock())
        with lock:
            yield


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class IssuanceOrchestrator:
    """Drive one certificate from order to persisted secret.

    Parameters
    ----------
    settings:
        The ``acme`` configuration section.
    providers:
        Enabled challenge providers.
    secrets:
        Where finished certificates are written (``save_tls_secret``).
    account_key:
        The ACME account's P-256 key.
    preferred_challenge:
        Challenge type tried first for every authorization.
    client_factory:
        Builds a fresh :class:`AcmeClient` per issuance (tests inject a
        client over a fake server).
    stop_event:
        Set on shutdown; interrupts every poll wait.

    """

    def __init__(
        self,
        settings: AcmeSettings,
        providers: ProviderRegistry,
        secrets: ClusterClient,
        account_key: ec.EllipticCurvePrivateKey,
        *,
        preferred_challenge: ChallengeType = ChallengeType.HTTP_01,
        client_factory: Callable[[], AcmeClient] | None = None,
        stop_event: threading.Event | None = None,
        locks: IssuanceLocks | None = None,
    ) -> None:
        self._settings = settings
        self._providers = providers
        self._secrets = secrets
        self._account_key = account_key
        self._jwk = public_jwk(account_key)
        self._preferred = preferred_challenge
        self._client_factory = client_factory or self._default_client
        self._stop_event = stop_event or threading.Event()
        self._locks = locks or IssuanceLocks()

    def _default_client(self) -> AcmeClient:
        return AcmeClient(
            self._settings.directory_url,
            self._account_key,
            timeout=self._settings.request_timeout_seconds,
        )

    # -- public API -------------------------------------------------------

    def renew(self, request: RenewalRequest) -> RenewalOutcome:
        """Issue a certificate for *request* and persist it.

        Returns
        -------
        RenewalOutcome
            The successful outcome.

        Raises
        ------
        RenewalError
            On any failure; carries the transcript and failure kind.

        """
        outcome = RenewalOutcome(request.namespace, request.secret_name, request.hosts)
        transcript = TranscriptLogger(log)

        with (
            renewal_context(request.namespace, request.secret_name),
            self._locks.hold(request.namespace, request.secret_name),
        ):
            try:
                self._issue(request, outcome, transcript)
            except Exception as exc:
                outcome.error = exc
                self._advance(outcome, IssuanceState.FAILED, transcript)
                transcript.error("Renewal failed: %s", exc)
                outcome.transcript = transcript.lines
                raise RenewalError(
                    request.namespace,
                    request.secret_name,
                    outcome.transcript,
                    exc,
                ) from exc

        outcome.success = True
        outcome.transcript = transcript.lines
        return outcome

    # -- state machine ----------------------------------------------------

    @staticmethod
    def _advance(
        outcome: RenewalOutcome,
        state: IssuanceState,
        transcript: TranscriptLogger,
    ) -> None:
        outcome.state = state
        transcript.debug("State: %s", state.value)

    def _issue(
        self,
        request: RenewalRequest,
        outcome: RenewalOutcome,
        transcript: TranscriptLogger,
    ) -> None:
        if not request.hosts:
            msg = f"No hosts requested for secret {request.namespace}/{request.secret_name}"
            raise ProvisioningError(msg, retryable=False)

        transcript.info(
            "Renewing secret %s/%s for hosts: %s",
            request.namespace,
            request.secret_name,
            ", ".join(request.hosts),
        )

        client = self._client_factory()
        client.read_directory()
        client.get_nonce()
        kid = client.create_account(
            self._settings.email or None,
            terms_accepted=self._settings.terms_accepted,
            eab_kid=self._settings.eab_key_id,
            eab_hmac_key=self._settings.eab_hmac_key,
        )
        transcript.info("Using account %s", kid)
        self._advance(outcome, IssuanceState.ACCOUNT_READY, transcript)

        order = client.create_order(request.hosts)
        transcript.info("Created order %s (%s)", order.url, order.status.value)
        self._advance(outcome, IssuanceState.ORDER_CREATED, transcript)

        self._advance(outcome, IssuanceState.AUTHORIZING, transcript)
        for authz_url in order.authorizations:
            self._authorize(client, authz_url, transcript)

        self._advance(outcome, IssuanceState.FINALIZING, transcript)
        leaf_key = generate_leaf_key(LeafKeyType(self._settings.leaf_key_type))
        csr = build_csr(leaf_key, list(request.hosts))
        finalized = client.finalize_order(order.finalize, csr)
        transcript.info("Finalized order %s (%s)", order.url, finalized.status.value)
        finalized = self._await_order(client, order.url, finalized, transcript)

        chain = client.download_certificate(finalized.certificate)
        info = parse_certificate(chain)
        outcome.not_after = info.not_after
        transcript.info("Downloaded certificate valid until %s", info.not_after.isoformat())
        self._advance(outcome, IssuanceState.CERT_READY, transcript)

        self._secrets.save_tls_secret(
            request.namespace,
            request.secret_name,
            chain.encode("ascii"),
            private_key_pem(leaf_key),
        )
        transcript.info("Saved secret %s/%s", request.namespace, request.secret_name)
        self._advance(outcome, IssuanceState.PERSISTED, transcript)

    # -- authorizations ---------------------------------------------------

    def _authorize(self, client: AcmeClient, authz_url: str, transcript: TranscriptLogger) -> None:
        authz = client.get_authorization(authz_url)
        if authz.status == AuthorizationStatus.VALID:
            transcript.info("Authorization for %s already valid", authz.identifier)
            return

        challenge, provider = self._providers.select(authz, self._preferred)
        transcript.info(
            "Validating %s with %s via %s",
            authz.identifier,
            challenge.type,
            provider.kind.value,
        )
        key_authz = key_authorization(challenge.token, self._jwk)

        state: ProvisioningState | None = None
        try:
            state = provider.provision(
                domain=authz.identifier,
                token=challenge.token,
                key_authorization=key_authz,
            )
            transcript.info("Provisioned %s evidence for %s", challenge.type, authz.identifier)

            client.trigger_challenge(challenge.url)
            transcript.info("Triggered challenge %s", challenge.url)

            for attempt in range(1, self._settings.validation_retries + 1):
                self._sleep(self._settings.validation_wait_seconds)
                authz = client.get_authorization(authz_url)
                transcript.debug(
                    "Authorization %s is %s (check %d)",
                    authz.identifier,
                    authz.status.value,
                    attempt,
                )
                if authz.status == AuthorizationStatus.VALID:
                    transcript.info("Authorization for %s is valid", authz.identifier)
                    return
                if authz.status != AuthorizationStatus.PENDING:
                    msg = (
                        f"Authorization for {authz.identifier} became "
                        f"{authz.status.value}: {authz.first_error()}"
                    )
                    raise AuthorizationInvalid(msg)

            msg = (
                f"Authorization {authz_url} for {authz.identifier} not valid after "
                f"{self._settings.validation_retries} checks"
            )
            raise ValidationTimeout(msg)
        finally:
            if state is None:
                state = provider.initial_state(
                    domain=authz.identifier,
                    token=challenge.token,
                    key_authorization=key_authz,
                )
                state.partial = True
            self._release(provider, state, transcript)

    @staticmethod
    def _release(
        provider: ChallengeProvider,
        state: ProvisioningState,
        transcript: TranscriptLogger,
    ) -> None:
        """Deprovision best-effort; a failure here never masks the real error."""
        try:
            provider.deprovision(state)
            transcript.info("Removed %s evidence for %s", state.challenge_type.value, state.domain)
        except Exception as exc:  # noqa: BLE001
            transcript.warning(
                "Failed to remove %s evidence for %s: %s",
                state.challenge_type.value,
                state.domain,
                exc,
            )

    # -- finalization -----------------------------------------------------

    def _await_order(
        self,
        client: AcmeClient,
        order_url: str,
        order: Order,
        transcript: TranscriptLogger,
    ) -> Order:
        for attempt in range(1, self._settings.validation_retries + 1):
            if order.status == OrderStatus.VALID and order.certificate:
                return order
            if order.status == OrderStatus.INVALID:
                msg = f"Order {order_url} became invalid: {order.error}"
                raise AuthorizationInvalid(msg)
            self._sleep(self._settings.validation_wait_seconds)
            order = client.get_order(order_url)
            transcript.debug("Order %s is %s (check %d)", order_url, order.status.value, attempt)

        if order.status == OrderStatus.VALID and order.certificate:
            return order
        msg = f"Order {order_url} not valid after {self._settings.validation_retries} checks"
        raise ValidationTimeout(msg)

    def _sleep(self, seconds: float) -> None:
        if self._stop_event.wait(timeout=seconds):
            msg = "Issuance interrupted by shutdown"
            raise Cancelled(msg)
