"""Process wiring for the kcert controller.

Usage::

    from kcert.app import Runtime
    from kcert.config import get_config

    runtime = Runtime.from_settings(get_config().settings)
    runtime.run_forever()  # until SIGTERM / SIGINT
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kcert.app.shutdown import ShutdownCoordinator
from kcert.challenge.registry import ProviderRegistry
from kcert.challenge.responder import ChallengeTokenStore, ResponderServer, create_responder_app
from kcert.cluster.client import ClusterClient
from kcert.core.jws import generate_account_key, load_account_key
from kcert.core.types import ChallengeType
from kcert.services.coalesce import CoalescingTrigger
from kcert.services.issuance import IssuanceOrchestrator
from kcert.services.notification import create_notifier
from kcert.services.reconcile import ReconciliationController
from kcert.services.renewal_worker import RenewalWorker
from kcert.services.supervisor import Supervisor
from kcert.services.watchers import start_watchers

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric import ec

    from kcert.config.settings import KCertSettings
    from kcert.services.issuance import RenewalOutcome
    from kcert.services.notification import Notifier
    from kcert.services.reconcile import ReconcileReport

log = logging.getLogger(__name__)


def resolve_account_key(material: str | None) -> ec.EllipticCurvePrivateKey:
    """Load the configured ACME account key, or generate a throwaway one."""
    if material:
        return load_account_key(material)
    log.warning(
        "No acme.key configured: using a generated account key, a new ACME "
        "account will be registered on every start",
    )
    return generate_account_key()


class Runtime:
    """Every long-lived component of a running controller.

    Build with :meth:`from_settings`; tests construct it directly with
    fakes.
    """

    def __init__(
        self,
        settings: KCertSettings,
        *,
        cluster: ClusterClient,
        coordinator: ShutdownCoordinator,
        tokens: ChallengeTokenStore,
        providers: ProviderRegistry,
        orchestrator: IssuanceOrchestrator,
        notifier: Notifier,
    ) -> None:
        self.settings = settings
        self.cluster = cluster
        self.coordinator = coordinator
        self.tokens = tokens
        self.providers = providers
        self.orchestrator = orchestrator
        self.notifier = notifier

        controller_settings = settings.controller
        self.controller = ReconciliationController(
            cluster,
            orchestrator,
            notifier,
            threshold_days=settings.acme.renewal_threshold_days,
            include_managed=controller_settings.include_managed,
        )
        self.trigger = CoalescingTrigger(self._tracked_check)
        self.supervisor = Supervisor(
            notifier,
            initial_backoff=controller_settings.initial_backoff_seconds,
            max_backoff=controller_settings.max_backoff_seconds,
            stop_event=coordinator.stop_event,
        )
        self.renewal_worker = RenewalWorker(
            self.trigger,
            controller_settings.renewal_check_hours,
            enabled=controller_settings.auto_renewal,
            stop_event=coordinator.stop_event,
        )
        self._responder: ResponderServer | None = None

    @classmethod
    def from_settings(
        cls,
        settings: KCertSettings,
        *,
        cluster: ClusterClient | None = None,
    ) -> Runtime:
        """Wire a runtime against the real cluster and ACME server."""
        coordinator = ShutdownCoordinator()
        stop_event = coordinator.stop_event
        cluster = cluster or ClusterClient(settings.controller)
        tokens = ChallengeTokenStore()

        providers = ProviderRegistry.from_settings(
            settings.challenge,
            cluster=cluster,
            tokens=tokens,
            ingress_name=settings.controller.ingress_name,
            stop_event=stop_event,
        )
        log.info(
            "Challenge types enabled: %s",
            ", ".join(t.value for t in providers.enabled_types) or "none",
        )

        orchestrator = IssuanceOrchestrator(
            settings.acme,
            providers,
            cluster,
            resolve_account_key(settings.acme.key),
            preferred_challenge=ChallengeType(settings.challenge.preferred_type),
            stop_event=stop_event,
        )
        notifier = create_notifier(settings.smtp, settings.acme.email)

        return cls(
            settings,
            cluster=cluster,
            coordinator=coordinator,
            tokens=tokens,
            providers=providers,
            orchestrator=orchestrator,
            notifier=notifier,
        )

    # -- operations ---------------------------------------------------------

    def _tracked_check(self) -> None:
        with self.coordinator.track("reconcile-check"):
            self.controller.check()

    def check_once(self) -> ReconcileReport:
        """Run one reconciliation pass in the calling thread."""
        with self.coordinator.track("reconcile-check"):
            return self.controller.check()

    def renew(self, namespace: str, secret_name: str, hosts: Sequence[str]) -> RenewalOutcome:
        """Issue one certificate now, regardless of its current state."""
        with self.coordinator.track(f"renew {namespace}/{secret_name}"):
            return self.controller.renew(namespace, secret_name, list(hosts))

    # -- lifecycle ----------------------------------------------------------

    def start_responder(self) -> None:
        """Serve HTTP-01 tokens when HTTP-01 validation is enabled."""
        if self._responder is not None or not self.providers.is_enabled(ChallengeType.HTTP_01):
            return
        responder = self.settings.responder
        self._responder = ResponderServer(
            create_responder_app(self.tokens),
            responder.bind,
            responder.port,
        )
        self._responder.start()

    def start(self) -> None:
        """Start the responder, the watch loops and the renewal worker."""
        self.start_responder()
        controller_settings = self.settings.controller
        loops = start_watchers(
            self.supervisor,
            self.cluster,
            self.trigger,
            ingresses=controller_settings.watch_ingresses,
            config_maps=controller_settings.watch_configmaps,
        )
        log.info("Started %d watch loop(s)", len(loops))
        self.renewal_worker.start()

    def stop(self) -> None:
        """Cancel outstanding work and stop every component."""
        self.coordinator.initiate()
        self.trigger.close()
        self.renewal_worker.stop()
        self.supervisor.stop()
        if self._responder is not None:
            self._responder.stop()
            self._responder = None
        log.info("kcert stopped")

    def run_forever(self) -> None:
        """Start everything and block until a shutdown signal arrives."""
        self.coordinator.register_signals()
        self.start()
        log.info("kcert controller running")
        self.coordinator.stop_event.wait()
        self.stop()
