"""HTTP-01 provider backed by a temporary challenge ingress.

Provisioning registers the key authorization with the token responder,
publishes an ingress routing ``/.well-known/acme-challenge/`` on the
host to the kcert service, then blocks until the token is reachable
from outside (or a fixed wait elapses when the check is skipped).
Deprovisioning deletes the ingress and forgets the token.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import TYPE_CHECKING

import requests

from kcert.challenge.base import ChallengeProvider, ProvisioningState
from kcert.challenge.responder import CHALLENGE_PATH
from kcert.core.errors import PropagationTimeout, ProvisioningError
from kcert.core.types import ChallengeType, ProviderKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from kcert.challenge.responder import ChallengeTokenStore
    from kcert.cluster.client import ClusterClient
    from kcert.config.settings import HttpChallengeSettings

log = logging.getLogger(__name__)

_CHECK_TIMEOUT = 5
_MAX_NAME_LENGTH = 63


class HttpRouteProvider(ChallengeProvider):
    """Serve HTTP-01 key authorizations through a temporary ingress.

    Parameters
    ----------
    settings:
        HTTP-01 settings (ingress class, annotations, propagation knobs).
    cluster:
        Cluster client used to create and delete the ingress.
    tokens:
        Token store read by the responder.
    ingress_name:
        Base name of the challenge ingress; a per-host suffix keeps
        concurrent issuances from replacing each other's routes.
    session:
        Optional :class:`requests.Session` for the reachability check.

    """

    challenge_type = ChallengeType.HTTP_01
    kind = ProviderKind.HTTP
    settings: HttpChallengeSettings

    def __init__(
        self,
        settings: HttpChallengeSettings,
        cluster: ClusterClient,
        tokens: ChallengeTokenStore,
        *,
        ingress_name: str = "kcert",
        session: requests.Session | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        super().__init__(settings, stop_event=stop_event)
        self._cluster = cluster
        self._tokens = tokens
        self._ingress_name = ingress_name
        self._session = session or requests.Session()

    def ingress_name_for(self, hosts: Sequence[str]) -> str:
        """Deterministic, DNS-label-safe ingress name for a host set."""
        digest = hashlib.sha256(",".join(sorted(hosts)).encode("utf-8")).hexdigest()[:10]
        prefix = self._ingress_name[: _MAX_NAME_LENGTH - len(digest) - len("-challenge-")]
        return f"{prefix}-challenge-{digest}"

    # -- route lifecycle --------------------------------------------------

    def prepare(self, hosts: Sequence[str]) -> str:
        """Publish the challenge route for *hosts*; returns the ingress name.

        Only creates the ingress and does not wait for it to be served.
        Reachability is checked per token by :meth:`await_reachable`,
        which :meth:`provision` calls once the token is registered.
        """
        name = self.ingress_name_for(hosts)
        try:
            self._cluster.create_challenge_ingress(
                name,
                hosts,
                CHALLENGE_PATH,
                ingress_class_name=self.settings.ingress_class_name,
                annotations=self.settings.annotations,
                labels=self.settings.labels,
            )
        except Exception as exc:
            msg = f"Failed to create challenge ingress {name}: {exc}"
            raise ProvisioningError(msg) from exc
        return name

    def cleanup(self, name: str) -> None:
        try:
            self._cluster.delete_ingress(name)
        except Exception as exc:
            msg = f"Failed to delete challenge ingress {name}: {exc}"
            raise ProvisioningError(msg) from exc
        log.info("Deleted challenge ingress %s", name)

    def await_reachable(self, host: str, token: str, key_authorization: str) -> None:
        """Block until ``http://<host>/.well-known/acme-challenge/<token>`` answers.

        Raises
        ------
        PropagationTimeout
            If the expected body is not served within the retry budget.

        """
        if self.settings.skip_propagation_check:
            log.debug(
                "Propagation check skipped, waiting %ss",
                self.settings.propagation_wait_seconds,
            )
            self._sleep(self.settings.propagation_wait_seconds)
            return

        url = f"http://{host}{CHALLENGE_PATH}{token}"
        for attempt in range(1, self.settings.propagation_retries + 1):
            try:
                response = self._session.get(url, timeout=_CHECK_TIMEOUT, allow_redirects=True)
                if response.status_code == 200 and response.text.strip() == key_authorization:  # noqa: PLR2004
                    log.info("Challenge route for %s reachable after %d check(s)", host, attempt)
                    return
                log.debug("Challenge route %s answered HTTP %d", url, response.status_code)
            except requests.RequestException as exc:
                log.debug("Challenge route %s not reachable yet: %s", url, exc)
            self._sleep(self.settings.propagation_check_interval_seconds)

        msg = (
            f"Challenge route {url} not reachable after "
            f"{self.settings.propagation_retries} checks"
        )
        raise PropagationTimeout(msg)

    # -- provider contract ------------------------------------------------

    def initial_state(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        state = super().initial_state(domain=domain, token=token, key_authorization=key_authorization)
        state.handle = self.ingress_name_for([domain])
        return state

    def provision(self, *, domain: str, token: str, key_authorization: str) -> ProvisioningState:
        if domain.startswith("*."):
            msg = f"HTTP-01 cannot validate wildcard domain {domain}"
            raise ProvisioningError(msg)

        state = self.initial_state(domain=domain, token=token, key_authorization=key_authorization)
        self._tokens.add(token, key_authorization)
        self.prepare([domain])
        self.await_reachable(domain, token, key_authorization)
        return state

    def deprovision(self, state: ProvisioningState) -> None:
        self._tokens.remove(state.token)
        self.cleanup(state.handle)
        state.released = True
