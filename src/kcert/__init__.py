"""kcert: ACME certificate controller for Kubernetes."""

__version__ = "1.0.0"
