"""Watch loops for labelled ingresses and certificate-request config maps.

Each loop body consumes one watch stream and signals the reconciliation
trigger on every add or change.  When the stream ends (server timeout)
the body returns and the :class:`~kcert.services.supervisor.Supervisor`
starts it again.  An ERROR event raises, so the supervisor reports the
failure and backs off before the next attempt.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kubernetes.client.rest import ApiException

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Iterator
    from typing import Any

    from kcert.cluster.client import ClusterClient
    from kcert.services.coalesce import CoalescingTrigger
    from kcert.services.supervisor import Supervisor

log = logging.getLogger(__name__)

_SIGNAL_EVENTS = frozenset({"ADDED", "MODIFIED"})


def watch_error(kind: str, obj: Any) -> ApiException:
    """Build an :class:`ApiException` from the Status body of an ERROR event."""
    if isinstance(obj, dict):
        code, message = obj.get("code"), obj.get("message")
    else:
        code, message = getattr(obj, "code", None), getattr(obj, "message", None)
    return ApiException(status=code or 0, reason=f"{kind} watch error: {message or obj}")


def consume_events(
    events: Iterator[tuple[str, Any]],
    trigger: CoalescingTrigger,
    kind: str,
    stop_event: threading.Event,
) -> int:
    """Signal *trigger* for every relevant event; return how many were seen."""
    seen = 0
    for event_type, obj in events:
        if stop_event.is_set():
            break
        seen += 1
        metadata = getattr(obj, "metadata", None)
        name = f"{getattr(metadata, 'namespace', '?')}/{getattr(metadata, 'name', '?')}"
        if event_type == "ERROR":
            raise watch_error(kind, obj)
        if event_type in _SIGNAL_EVENTS:
            log.info("%s %s %s", kind, name, event_type.lower())
            trigger.run_check()
        else:
            log.debug("%s %s %s, ignoring", kind, name, event_type.lower())
    return seen


def ingress_watch(
    cluster: ClusterClient,
    trigger: CoalescingTrigger,
    namespace: str | None,
    stop_event: threading.Event,
) -> Callable[[], None]:
    def body() -> None:
        consume_events(cluster.watch_ingresses(namespace), trigger, "Ingress", stop_event)

    return body


def config_map_watch(
    cluster: ClusterClient,
    trigger: CoalescingTrigger,
    namespace: str | None,
    stop_event: threading.Event,
) -> Callable[[], None]:
    def body() -> None:
        consume_events(cluster.watch_config_maps(namespace), trigger, "ConfigMap", stop_event)

    return body


def start_watchers(
    supervisor: Supervisor,
    cluster: ClusterClient,
    trigger: CoalescingTrigger,
    *,
    ingresses: bool = True,
    config_maps: bool = True,
) -> list[str]:
    """Start a supervised watch loop per namespace and resource kind.

    Returns the names of the started loops.
    """
    started: list[str] = []
    for namespace in cluster.watch_namespaces():
        scope = namespace or "all"
        if ingresses:
            name = f"watch-ingresses-{scope}"
            supervisor.start(
                name,
                ingress_watch(cluster, trigger, namespace, supervisor.stop_event),
            )
            started.append(name)
        if config_maps:
            name = f"watch-configmaps-{scope}"
            supervisor.start(
                name,
                config_map_watch(cluster, trigger, namespace, supervisor.stop_event),
            )
            started.append(name)
    return started
