"""Tests for kcert.cluster.client: Kubernetes calls against mocked API objects."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

from kcert.cluster.client import (
    CERT_LABEL_KEY,
    ClusterClient,
    load_cluster_config,
    secret_value,
)
from kcert.config.settings import build_settings
from kcert.core.errors import PersistenceError


def _page(items, token=None):
    return SimpleNamespace(items=items, metadata=SimpleNamespace(_continue=token))


@pytest.fixture()
def core():
    return MagicMock()


@pytest.fixture()
def networking():
    return MagicMock()


def _cluster(core, networking, **controller) -> ClusterClient:
    controller.setdefault("namespace", "kcert-system")
    settings = build_settings({"kcert": controller}).controller
    return ClusterClient(settings, core_api=core, networking_api=networking)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    def test_cluster_wide_with_label(self, core, networking):
        networking.list_ingress_for_all_namespaces.return_value = _page(["i1"])
        cluster = _cluster(core, networking, label_value="prod")
        assert list(cluster.list_ingresses()) == ["i1"]
        networking.list_ingress_for_all_namespaces.assert_called_once_with(
            label_selector="kcert.dev/ingress=prod",
        )

    def test_follows_continue_token(self, core, networking):
        core.list_config_map_for_all_namespaces.side_effect = [
            _page(["a", "b"], token="next"),
            _page(["c"]),
        ]
        cluster = _cluster(core, networking)
        assert list(cluster.list_config_maps()) == ["a", "b", "c"]
        second = core.list_config_map_for_all_namespaces.call_args_list[1]
        assert second.kwargs == {
            "label_selector": "kcert.dev/cert-request=request",
            "_continue": "next",
        }

    def test_namespace_constraints(self, core, networking):
        core.list_namespaced_secret.side_effect = lambda ns, **kw: _page([f"{ns}-secret"])
        cluster = _cluster(core, networking, namespace_constraints=["a", "b"])
        assert list(cluster.list_managed_secrets()) == ["a-secret", "b-secret"]
        core.list_secret_for_all_namespaces.assert_not_called()
        assert core.list_namespaced_secret.call_args.kwargs == {"label_selector": "kcert.dev/secret=managed"}

    def test_watch_namespaces(self, core, networking):
        assert _cluster(core, networking).watch_namespaces() == [None]
        assert _cluster(core, networking, namespace_constraints="a,b").watch_namespaces() == ["a", "b"]


# ---------------------------------------------------------------------------
# Watching
# ---------------------------------------------------------------------------


class TestWatching:
    @patch("kcert.cluster.client.watch.Watch")
    def test_cluster_wide_stream(self, watch_cls, core, networking):
        w = watch_cls.return_value
        w.stream.return_value = iter([{"type": "ADDED", "object": "ing"}])
        events = list(_cluster(core, networking).watch_ingresses())
        assert events == [("ADDED", "ing")]
        assert w.stream.call_args.args == (networking.list_ingress_for_all_namespaces,)
        assert w.stream.call_args.kwargs["label_selector"] == "kcert.dev/ingress=managed"
        w.stop.assert_called_once()

    @patch("kcert.cluster.client.watch.Watch")
    def test_namespaced_stream(self, watch_cls, core, networking):
        w = watch_cls.return_value
        w.stream.return_value = iter([])
        list(_cluster(core, networking).watch_config_maps("web"))
        assert w.stream.call_args.args == (core.list_namespaced_config_map, "web")


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class TestSecrets:
    def test_read_missing_secret(self, core, networking):
        core.read_namespaced_secret.side_effect = ApiException(status=404)
        assert _cluster(core, networking).read_secret("web", "tls") is None

    def test_read_other_error_propagates(self, core, networking):
        core.read_namespaced_secret.side_effect = ApiException(status=403)
        with pytest.raises(ApiException):
            _cluster(core, networking).read_secret("web", "tls")

    def test_create_when_missing(self, core, networking):
        core.read_namespaced_secret.side_effect = ApiException(status=404)
        _cluster(core, networking).save_tls_secret("web", "tls", b"CERT", b"KEY")

        namespace, body = core.create_namespaced_secret.call_args.args
        assert namespace == "web"
        assert body.type == "kubernetes.io/tls"
        assert body.metadata.labels == {CERT_LABEL_KEY: "managed"}
        assert secret_value(body, "tls.crt") == b"CERT"
        assert secret_value(body, "tls.key") == b"KEY"
        core.replace_namespaced_secret.assert_not_called()

    def test_replace_keeps_labels(self, core, networking):
        existing = client.V1Secret(
            metadata=client.V1ObjectMeta(name="tls", namespace="web", labels={"app": "site"}),
            data={"tls.crt": base64.b64encode(b"OLD").decode()},
        )
        core.read_namespaced_secret.return_value = existing
        _cluster(core, networking).save_tls_secret("web", "tls", b"NEW", b"KEY")

        name, namespace, body = core.replace_namespaced_secret.call_args.args
        assert (name, namespace) == ("tls", "web")
        assert body.metadata.labels == {"app": "site", CERT_LABEL_KEY: "managed"}
        assert secret_value(body, "tls.crt") == b"NEW"
        core.create_namespaced_secret.assert_not_called()

    def test_write_failure_is_persistence_error(self, core, networking):
        core.read_namespaced_secret.side_effect = ApiException(status=404)
        core.create_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(PersistenceError, match="HTTP 403 Forbidden"):
            _cluster(core, networking).save_tls_secret("web", "tls", b"C", b"K")

    def test_secret_value_missing(self):
        assert secret_value(SimpleNamespace(data=None), "tls.crt") is None
        assert secret_value(SimpleNamespace(data={"tls.crt": ""}), "tls.crt") is None


# ---------------------------------------------------------------------------
# Challenge ingress
# ---------------------------------------------------------------------------


class TestChallengeIngress:
    def test_create_routes_every_host(self, core, networking):
        networking.delete_namespaced_ingress.side_effect = ApiException(status=404)
        cluster = _cluster(core, networking, service_name="kcert-svc", service_port=8080)
        cluster.create_challenge_ingress(
            "kcert-abc",
            ["a.com", "b.com"],
            "/.well-known/acme-challenge/",
            ingress_class_name="nginx",
            annotations={"x": "y"},
        )

        namespace, body = networking.create_namespaced_ingress.call_args.args
        assert namespace == "kcert-system"
        assert body.metadata.name == "kcert-abc"
        assert body.metadata.annotations == {"x": "y"}
        assert body.metadata.labels is None
        assert body.spec.ingress_class_name == "nginx"
        assert [r.host for r in body.spec.rules] == ["a.com", "b.com"]
        path = body.spec.rules[0].http.paths[0]
        assert path.path == "/.well-known/acme-challenge/"
        assert path.path_type == "Prefix"
        assert path.backend.service.name == "kcert-svc"
        assert path.backend.service.port.number == 8080

    def test_existing_ingress_replaced(self, core, networking):
        cluster = _cluster(core, networking)
        cluster.create_challenge_ingress("kcert-abc", ["a.com"], "/p")
        networking.delete_namespaced_ingress.assert_called_once_with("kcert-abc", "kcert-system")

    def test_delete_other_error_propagates(self, core, networking):
        networking.delete_namespaced_ingress.side_effect = ApiException(status=500)
        with pytest.raises(ApiException):
            _cluster(core, networking).delete_ingress("kcert-abc")


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------


class TestLoadClusterConfig:
    @patch("kcert.cluster.client.config")
    def test_in_cluster(self, config_mod):
        load_cluster_config()
        config_mod.load_incluster_config.assert_called_once()
        config_mod.load_kube_config.assert_not_called()

    @patch("kcert.cluster.client.config.load_kube_config")
    @patch("kcert.cluster.client.config.load_incluster_config")
    def test_falls_back_to_kubeconfig(self, incluster, kube):
        incluster.side_effect = ConfigException("not in a pod")
        load_cluster_config("/tmp/kubeconfig")
        kube.assert_called_once_with(config_file="/tmp/kubeconfig")
