"""ACME protocol client.

Exports the client and the typed resource views it returns.
"""

from kcert.acme.client import AcmeClient
from kcert.acme.models import Authorization, Challenge, Directory, Order

__all__ = [
    "AcmeClient",
    "Authorization",
    "Challenge",
    "Directory",
    "Order",
]
