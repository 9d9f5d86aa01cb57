"""Kubernetes operations consumed by kcert.

Wraps the official ``kubernetes`` client: secret read and
create-or-replace, paginated listing of labelled ingresses, config maps
and managed secrets, watch streams, and the temporary challenge ingress.

Every list honours ``kcert.namespace_constraints``: when constraints are
configured, each namespace is queried separately instead of listing
across the cluster.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from kcert.core.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from kcert.config.settings import ControllerSettings

log = logging.getLogger(__name__)

TLS_SECRET_TYPE = "kubernetes.io/tls"
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"

CERT_LABEL_KEY = "kcert.dev/secret"
INGRESS_LABEL_KEY = "kcert.dev/ingress"
CERT_REQUEST_LABEL_KEY = "kcert.dev/cert-request"
CERT_REQUEST_LABEL_VALUE = "request"

_NOT_FOUND = 404
_WATCH_TIMEOUT_SECONDS = 300


def load_cluster_config(kubeconfig: str | None = None) -> None:
    """Load in-cluster credentials, falling back to a kubeconfig file."""
    try:
        config.load_incluster_config()
        log.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config(config_file=kubeconfig)
        log.debug("Loaded kubeconfig %s", kubeconfig or "(default)")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def secret_value(secret: Any, key: str) -> bytes | None:  # noqa: ANN401
    """Decode one entry of a secret's ``data`` map."""
    data = getattr(secret, "data", None) or {}
    value = data.get(key)
    return base64.b64decode(value) if value else None


class ClusterClient:
    """Kubernetes API access for kcert.

    Parameters
    ----------
    settings:
        The ``kcert`` section of the configuration.
    core_api / networking_api:
        Optional pre-built API objects (injected by tests).  When both
        are omitted the cluster configuration is loaded first.

    """

    def __init__(
        self,
        settings: ControllerSettings,
        *,
        core_api: client.CoreV1Api | None = None,
        networking_api: client.NetworkingV1Api | None = None,
    ) -> None:
        if core_api is None and networking_api is None:
            load_cluster_config(settings.kubeconfig)
        self._settings = settings
        self._core = core_api or client.CoreV1Api()
        self._networking = networking_api or client.NetworkingV1Api()

    @property
    def namespace(self) -> str:
        """The namespace kcert itself runs in."""
        return self._settings.namespace

    @property
    def _managed_selector(self) -> str:
        return f"{CERT_LABEL_KEY}={self._settings.label_value}"

    @property
    def _ingress_selector(self) -> str:
        return f"{INGRESS_LABEL_KEY}={self._settings.label_value}"

    @property
    def _config_map_selector(self) -> str:
        return f"{CERT_REQUEST_LABEL_KEY}={CERT_REQUEST_LABEL_VALUE}"

    # -- pagination -------------------------------------------------------

    @staticmethod
    def _paginate(list_fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Iterator[Any]:  # noqa: ANN401
        """Yield every item of a list call, following continue tokens."""
        token: str | None = None
        while True:
            if token:
                kwargs["_continue"] = token
            result = list_fn(*args, **kwargs)
            yield from result.items or []
            token = getattr(result.metadata, "_continue", None) if result.metadata else None
            if not token:
                return

    def _list(
        self,
        all_fn: Callable[..., Any],
        namespaced_fn: Callable[..., Any],
        label_selector: str,
    ) -> Iterator[Any]:
        constraints = self._settings.namespace_constraints
        if not constraints:
            yield from self._paginate(all_fn, label_selector=label_selector)
            return
        for namespace in constraints:
            yield from self._paginate(namespaced_fn, namespace, label_selector=label_selector)

    # -- listing ----------------------------------------------------------

    def list_ingresses(self) -> Iterator[Any]:
        """Yield every ingress labelled for kcert."""
        return self._list(
            self._networking.list_ingress_for_all_namespaces,
            self._networking.list_namespaced_ingress,
            self._ingress_selector,
        )

    def list_config_maps(self) -> Iterator[Any]:
        """Yield every config map labelled as a certificate request."""
        return self._list(
            self._core.list_config_map_for_all_namespaces,
            self._core.list_namespaced_config_map,
            self._config_map_selector,
        )

    def list_managed_secrets(self) -> Iterator[Any]:
        """Yield every TLS secret kcert manages."""
        return self._list(
            self._core.list_secret_for_all_namespaces,
            self._core.list_namespaced_secret,
            self._managed_selector,
        )

    # -- watching ---------------------------------------------------------

    def watch_namespaces(self) -> Sequence[str | None]:
        """Namespaces to watch; ``None`` means cluster wide."""
        return list(self._settings.namespace_constraints) or [None]

    def _watch(
        self,
        all_fn: Callable[..., Any],
        namespaced_fn: Callable[..., Any],
        label_selector: str,
        namespace: str | None,
    ) -> Iterator[tuple[str, Any]]:
        w = watch.Watch()
        if namespace is None:
            stream = w.stream(
                all_fn,
                label_selector=label_selector,
                timeout_seconds=_WATCH_TIMEOUT_SECONDS,
            )
        else:
            stream = w.stream(
                namespaced_fn,
                namespace,
                label_selector=label_selector,
                timeout_seconds=_WATCH_TIMEOUT_SECONDS,
            )
        try:
            for event in stream:
                yield event["type"], event["object"]
        finally:
            w.stop()

    def watch_ingresses(self, namespace: str | None = None) -> Iterator[tuple[str, Any]]:
        """Yield ``(event_type, ingress)`` until the server closes the stream."""
        return self._watch(
            self._networking.list_ingress_for_all_namespaces,
            self._networking.list_namespaced_ingress,
            self._ingress_selector,
            namespace,
        )

    def watch_config_maps(self, namespace: str | None = None) -> Iterator[tuple[str, Any]]:
        """Yield ``(event_type, config_map)`` until the server closes the stream."""
        return self._watch(
            self._core.list_config_map_for_all_namespaces,
            self._core.list_namespaced_config_map,
            self._config_map_selector,
            namespace,
        )

    # -- secrets ----------------------------------------------------------

    def read_secret(self, namespace: str, name: str) -> Any | None:  # noqa: ANN401
        """Return the secret, or ``None`` when it does not exist."""
        try:
            return self._core.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == _NOT_FOUND:
                return None
            raise

    def save_tls_secret(self, namespace: str, name: str, cert_pem: bytes, key_pem: bytes) -> None:
        """Create or replace a TLS secret holding *cert_pem* and *key_pem*.

        Raises
        ------
        PersistenceError
            If the Kubernetes API rejects the write.

        """
        data = {TLS_CERT_KEY: _b64(cert_pem), TLS_PRIVATE_KEY_KEY: _b64(key_pem)}
        try:
            secret = self.read_secret(namespace, name)
            if secret is None:
                body = client.V1Secret(
                    metadata=client.V1ObjectMeta(
                        name=name,
                        namespace=namespace,
                        labels={CERT_LABEL_KEY: self._settings.label_value},
                    ),
                    type=TLS_SECRET_TYPE,
                    data=data,
                )
                self._core.create_namespaced_secret(namespace, body)
                log.info("Created secret %s/%s", namespace, name)
                return

            secret.data = data
            labels = dict(secret.metadata.labels or {})
            labels[CERT_LABEL_KEY] = self._settings.label_value
            secret.metadata.labels = labels
            self._core.replace_namespaced_secret(name, namespace, secret)
            log.info("Replaced secret %s/%s", namespace, name)
        except ApiException as exc:
            msg = f"Failed to save secret {namespace}/{name}: HTTP {exc.status} {exc.reason}"
            raise PersistenceError(msg) from exc

    # -- challenge ingress ------------------------------------------------

    def create_challenge_ingress(
        self,
        name: str,
        hosts: Sequence[str],
        path: str,
        *,
        ingress_class_name: str | None = None,
        annotations: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Route ``http://<host><path>`` for each host to the kcert service.

        Any previous ingress with the same name is replaced.
        """
        backend = client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name=self._settings.service_name,
                port=client.V1ServiceBackendPort(number=self._settings.service_port),
            ),
        )
        rules = [
            client.V1IngressRule(
                host=host,
                http=client.V1HTTPIngressRuleValue(
                    paths=[client.V1HTTPIngressPath(path=path, path_type="Prefix", backend=backend)],
                ),
            )
            for host in hosts
        ]
        body = client.V1Ingress(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                annotations=annotations or None,
                labels=labels or None,
            ),
            spec=client.V1IngressSpec(ingress_class_name=ingress_class_name, rules=rules),
        )
        self.delete_ingress(name)
        self._networking.create_namespaced_ingress(self.namespace, body)
        log.info("Created challenge ingress %s/%s for %s", self.namespace, name, ", ".join(hosts))

    def delete_ingress(self, name: str) -> None:
        """Delete an ingress in kcert's namespace; missing is not an error."""
        try:
            self._networking.delete_namespaced_ingress(name, self.namespace)
        except ApiException as exc:
            if exc.status != _NOT_FOUND:
                raise
