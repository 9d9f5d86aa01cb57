"""Domain-name helpers shared by the DNS providers."""

from __future__ import annotations

_REGISTRABLE_LABELS = 2


def strip_wildcard(domain: str) -> str:
    return domain.removeprefix("*.")


def registrable_domain(domain: str) -> str:
    """Return the last two labels of *domain* (``a.b.example.com`` -> ``example.com``).

    Multi-label public suffixes such as ``co.uk`` are not special-cased.
    """
    labels = strip_wildcard(domain).rstrip(".").lower().split(".")
    return ".".join(labels[-_REGISTRABLE_LABELS:])
