"""Abstract base classes for challenge providers.

A provider publishes the evidence for one challenge type and removes
it again afterwards.  Every provider inherits from
:class:`ChallengeProvider`; DNS providers inherit from
:class:`DnsChallengeProvider` and only implement the two TXT record
operations.
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import dns.exception
import dns.resolver

from kcert.core.errors import Cancelled, PropagationTimeout
from kcert.core.jws import dns_txt_value
from kcert.core.types import ChallengeType

if TYPE_CHECKING:
    from kcert.config.settings import DnsChallengeSettings
    from kcert.core.types import ProviderKind

log = logging.getLogger(__name__)

ACME_CHALLENGE_LABEL = "_acme-challenge"


@dataclass
class ProvisioningState:
    """Opaque handle returned by :meth:`ChallengeProvider.provision`.

    Consumed exactly once by :meth:`ChallengeProvider.deprovision`.
    ``partial`` marks a state rebuilt after ``provision`` raised, so
    the provider knows some of the evidence may never have been
    published.
    """

    challenge_type: ChallengeType
    domain: str
    token: str
    key_authorization: str
    record_name: str | None = None
    record_value: str | None = None
    handle: Any = None
    partial: bool = False
    released: bool = field(default=False, compare=False)


class ChallengeProvider(abc.ABC):
    """Base class for all challenge providers.

    Parameters
    ----------
    settings:
        Per-type settings (e.g. ``HttpChallengeSettings``).
    stop_event:
        Set on shutdown; every wait a provider performs is interrupted
        by it and raises :class:`Cancelled`.

    """

    challenge_type: ClassVar[ChallengeType]
    """The ACME challenge type this provider satisfies."""

    kind: ClassVar[ProviderKind]
    """Which implementation this is."""

    def __init__(
        self,
        settings: Any = None,  # noqa: ANN401
        *,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self._stop_event = stop_event or threading.Event()

    def _sleep(self, seconds: float) -> None:
        """Wait *seconds*, raising :class:`Cancelled` if shutdown interrupts."""
        if self._stop_event.wait(timeout=seconds):
            msg = f"{self.kind.value} provider interrupted by shutdown"
            raise Cancelled(msg)

    def initial_state(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        """Build the state describing what :meth:`provision` will publish."""
        return ProvisioningState(
            challenge_type=self.challenge_type,
            domain=domain,
            token=token,
            key_authorization=key_authorization,
        )

    @abc.abstractmethod
    def provision(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        """Publish the challenge evidence and block until it is usable.

        Must raise :class:`~kcert.core.errors.ProvisioningError` (or a
        subclass) on failure.

        Parameters
        ----------
        domain:
            The authorization's identifier, wildcard label included.
        token:
            The challenge token.
        key_authorization:
            ``token.thumbprint`` for the account key.

        """

    @abc.abstractmethod
    def deprovision(self, state: ProvisioningState) -> None:
        """Remove the evidence described by *state*.

        Must tolerate evidence that is already gone.
        """


class DnsChallengeProvider(ChallengeProvider):
    """DNS-01 provider built on two TXT record operations.

    Subclasses implement :meth:`create_txt_record` and
    :meth:`delete_txt_record`; this class derives the record name and
    value, waits for propagation and keeps provision/deprovision
    symmetric.
    """

    challenge_type = ChallengeType.DNS_01
    settings: DnsChallengeSettings | None

    @staticmethod
    def record_name(domain: str) -> str:
        """``_acme-challenge.<domain>`` with a leading ``*.`` stripped."""
        return f"{ACME_CHALLENGE_LABEL}.{domain.removeprefix('*.')}"

    def initial_state(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        state = super().initial_state(
            domain=domain,
            token=token,
            key_authorization=key_authorization,
        )
        state.record_name = self.record_name(domain)
        state.record_value = dns_txt_value(key_authorization)
        return state

    def provision(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        state = self.initial_state(domain=domain, token=token, key_authorization=key_authorization)
        bare_domain = domain.removeprefix("*.")
        self.create_txt_record(bare_domain, state.record_name, state.record_value)

        if self.settings is not None:
            if self.settings.verify_propagation:
                self._await_propagation(state.record_name, state.record_value)
            elif self.settings.propagation_seconds > 0:
                log.debug(
                    "Waiting %ss for %s to propagate",
                    self.settings.propagation_seconds,
                    state.record_name,
                )
                self._sleep(self.settings.propagation_seconds)
        return state

    def deprovision(self, state: ProvisioningState) -> None:
        self.delete_txt_record(
            state.domain.removeprefix("*."),
            state.record_name,
            state.record_value,
        )
        state.released = True

    def _await_propagation(self, record_name: str, record_value: str) -> None:
        """Poll DNS until *record_value* is visible at *record_name*."""
        resolver = dns.resolver.Resolver()
        if self.settings.resolvers:
            resolver.nameservers = list(self.settings.resolvers)

        for attempt in range(1, self.settings.verify_retries + 1):
            try:
                answer = resolver.resolve(record_name, "TXT")
                values = {b"".join(rdata.strings).decode("ascii") for rdata in answer}
            except (
                dns.resolver.NXDOMAIN,
                dns.resolver.NoAnswer,
                dns.resolver.NoNameservers,
                dns.exception.Timeout,
            ):
                values = set()

            if record_value in values:
                log.debug("TXT record %s visible after %d check(s)", record_name, attempt)
                return
            self._sleep(self.settings.propagation_seconds)

        msg = (
            f"TXT record {record_name} not visible after "
            f"{self.settings.verify_retries} checks"
        )
        raise PropagationTimeout(msg)

    @abc.abstractmethod
    def create_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        """Publish ``record_value`` as a TXT record at ``record_name``."""

    @abc.abstractmethod
    def delete_txt_record(self, domain: str, record_name: str, record_value: str) -> None:
        """Remove the TXT record; a missing record is logged, not raised."""
