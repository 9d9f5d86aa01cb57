"""Kubernetes access layer."""

from kcert.cluster.client import ClusterClient, load_cluster_config

__all__ = ["ClusterClient", "load_cluster_config"]
