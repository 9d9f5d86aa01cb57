"""Challenge provider registry and selection policy.

Providers are chosen by a pure function of configuration over the
closed set of :class:`~kcert.core.types.ProviderKind` values: HTTP-01
through the challenge ingress when ``challenge.http.enabled``, plus at
most one DNS-01 provider named by ``challenge.dns.provider``.

Usage::

    from kcert.challenge.registry import ProviderRegistry

    registry = ProviderRegistry.from_settings(settings.challenge, ...)
    challenge, provider = registry.select(authorization, preferred)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from kcert.core.errors import ProvisioningError
from kcert.core.types import ChallengeType, ProviderKind

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable

    from kcert.acme.models import Authorization, Challenge
    from kcert.challenge.base import ChallengeProvider
    from kcert.challenge.responder import ChallengeTokenStore
    from kcert.cluster.client import ClusterClient
    from kcert.config.settings import ChallengeSettings

log = logging.getLogger(__name__)


def enabled_kinds(settings: ChallengeSettings) -> tuple[ProviderKind, ...]:
    """Return the provider kinds the configuration enables, HTTP first."""
    kinds: list[ProviderKind] = []
    if settings.http.enabled:
        kinds.append(ProviderKind.HTTP)
    if settings.dns.provider in {ProviderKind.ROUTE53, ProviderKind.CLOUDFLARE}:
        kinds.append(ProviderKind(settings.dns.provider))
    return tuple(kinds)


def _build_provider(
    kind: ProviderKind,
    settings: ChallengeSettings,
    *,
    cluster: ClusterClient | None,
    tokens: ChallengeTokenStore | None,
    ingress_name: str,
    stop_event: threading.Event | None,
    clients: dict[ProviderKind, Any],
) -> ChallengeProvider:
    if kind == ProviderKind.HTTP:
        from kcert.challenge.http01 import HttpRouteProvider  # noqa: PLC0415

        if cluster is None or tokens is None:
            msg = "The HTTP provider needs a cluster client and a token store"
            raise ValueError(msg)
        return HttpRouteProvider(
            settings.http,
            cluster,
            tokens,
            ingress_name=ingress_name,
            session=clients.get(kind),
            stop_event=stop_event,
        )
    if kind == ProviderKind.ROUTE53:
        from kcert.challenge.route53 import Route53Provider  # noqa: PLC0415

        return Route53Provider(
            settings.dns,
            settings.route53,
            client=clients.get(kind),
            stop_event=stop_event,
        )

    from kcert.challenge.cloudflare import CloudflareProvider  # noqa: PLC0415

    return CloudflareProvider(
        settings.dns,
        settings.cloudflare,
        session=clients.get(kind),
        stop_event=stop_event,
    )


class ProviderRegistry:
    """Enabled challenge providers, keyed by challenge type.

    Parameters
    ----------
    providers:
        At most one provider per challenge type.

    """

    def __init__(self, providers: Iterable[ChallengeProvider]) -> None:
        self._providers: dict[ChallengeType, ChallengeProvider] = {}
        for provider in providers:
            if provider.challenge_type in self._providers:
                msg = f"More than one provider registered for {provider.challenge_type.value}"
                raise ValueError(msg)
            self._providers[provider.challenge_type] = provider
            log.info(
                "Enabled %s challenge provider: %s",
                provider.challenge_type.value,
                provider.kind.value,
            )

    @classmethod
    def from_settings(
        cls,
        settings: ChallengeSettings,
        *,
        cluster: ClusterClient | None = None,
        tokens: ChallengeTokenStore | None = None,
        ingress_name: str = "kcert",
        stop_event: threading.Event | None = None,
        clients: dict[ProviderKind, Any] | None = None,
    ) -> ProviderRegistry:
        """Build the registry the configuration describes.

        ``clients`` optionally supplies a pre-built transport per kind
        (a boto3 client for Route53, a :class:`requests.Session` for the
        others).
        """
        return cls(
            _build_provider(
                kind,
                settings,
                cluster=cluster,
                tokens=tokens,
                ingress_name=ingress_name,
                stop_event=stop_event,
                clients=clients or {},
            )
            for kind in enabled_kinds(settings)
        )

    def get(self, challenge_type: ChallengeType) -> ChallengeProvider:
        """Return the provider for a challenge type.

        Raises
        ------
        KeyError
            If the challenge type is not enabled.

        """
        try:
            return self._providers[challenge_type]
        except KeyError:
            msg = f"No provider registered for challenge type '{challenge_type.value}'"
            raise KeyError(msg) from None

    def is_enabled(self, challenge_type: ChallengeType) -> bool:
        return challenge_type in self._providers

    @property
    def enabled_types(self) -> list[ChallengeType]:
        return list(self._providers.keys())

    def select(
        self,
        authorization: Authorization,
        preferred: ChallengeType,
    ) -> tuple[Challenge, ChallengeProvider]:
        """Pick the challenge to satisfy *authorization*.

        The preferred type wins when the authorization offers it and a
        provider is enabled for it; otherwise the first other offered
        type with an enabled provider is used.

        Raises
        ------
        ProvisioningError
            If no offered challenge has an enabled provider.

        """
        order = [preferred] + [t for t in ChallengeType if t != preferred]
        for challenge_type in order:
            challenge = authorization.challenge_for(challenge_type.value)
            if challenge is not None and self.is_enabled(challenge_type):
                return challenge, self._providers[challenge_type]

        offered = ", ".join(c.type for c in authorization.challenges) or "none"
        enabled = ", ".join(t.value for t in self._providers) or "none"
        msg = (
            f"No usable challenge for {authorization.identifier}: "
            f"offered [{offered}], enabled [{enabled}]"
        )
        raise ProvisioningError(msg, retryable=False)
