"""Leaf key, CSR and certificate helpers.

Only what the issuance flow needs: a fresh key per certificate, a CSR
over the exact host set, and enough parsing of an existing chain to
decide whether it must be renewed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from kcert.core.types import LeafKeyType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

_RSA_KEY_SIZE = 2048


@dataclass(frozen=True)
class CertificateInfo:
    """What kcert needs to know about an installed certificate."""

    hosts: frozenset[str]
    not_before: datetime
    not_after: datetime
    serial_number: int


def dedupe_hosts(hosts: Sequence[str]) -> list[str]:
    """Return *hosts* lower-cased with duplicates removed, first-seen order kept."""
    seen: dict[str, None] = {}
    for host in hosts:
        host = host.strip().lower()
        if host:
            seen.setdefault(host, None)
    return list(seen)


def generate_leaf_key(key_type: LeafKeyType = LeafKeyType.RSA) -> CertificateIssuerPrivateKeyTypes:
    """Generate a fresh private key for one certificate."""
    if key_type == LeafKeyType.EC:
        return ec.generate_private_key(ec.SECP256R1())
    return rsa.generate_private_key(public_exponent=65537, key_size=_RSA_KEY_SIZE)


def build_csr(key: CertificateIssuerPrivateKeyTypes, hosts: Sequence[str]) -> bytes:
    """Build a DER CSR with CN = first host and every host as a DNS SAN.

    Parameters
    ----------
    key:
        The leaf private key.
    hosts:
        Deduplicated host names; must not be empty.

    Returns
    -------
    bytes
        DER-encoded PKCS#10 request.

    """
    if not hosts:
        msg = "Cannot build a CSR without hosts"
        raise ValueError(msg)

    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hosts[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(h) for h in hosts]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def private_key_pem(key: CertificateIssuerPrivateKeyTypes) -> bytes:
    """Serialise a leaf key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def parse_certificate(pem_chain: bytes | str) -> CertificateInfo:
    """Parse the leaf (first) certificate of a PEM chain.

    Hosts are the subject CN plus every DNS SAN.

    Raises
    ------
    ValueError
        If the data holds no parseable certificate.

    """
    if isinstance(pem_chain, str):
        pem_chain = pem_chain.encode("ascii")
    leaf = x509.load_pem_x509_certificate(pem_chain)

    hosts: set[str] = set()
    for attr in leaf.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
        hosts.add(str(attr.value).lower())
    try:
        san = leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        pass
    else:
        hosts.update(name.lower() for name in san.value.get_values_for_type(x509.DNSName))

    return CertificateInfo(
        hosts=frozenset(hosts),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
        serial_number=leaf.serial_number,
    )
