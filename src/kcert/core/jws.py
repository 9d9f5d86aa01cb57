"""JWS signing and JWK utilities for an ACME client (RFC 7515 / 7517 / 7638).

Uses the ``cryptography`` library directly -- no josepy dependency.
Only ES256 account keys are supported for signing; HS256 is used for
External Account Binding.

Security note:
    This module handles raw cryptographic operations.  Changes should
    be reviewed carefully: signatures must stay raw ``r || s`` (not
    DER) to remain bit-compatible with ACME servers.
"""

from __future__ import annotations

import base64
import hashlib
import hmac as _hmac
import json
import logging
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, utils

from kcert.core.errors import ConfigurationError

log = logging.getLogger(__name__)

# --- Constants -----------------------------------------------------------

ALGORITHM = "ES256"
"""The only JWA algorithm kcert signs with."""

_CURVE_NAME = "P-256"
_COMPONENT_LEN = 32
"""Byte length of each of r, s, x and y on P-256."""


# --- Base64url helpers (RFC 7515 S2) -------------------------------------


def b64url_encode(b: bytes) -> str:
    """Encode bytes to base64url without padding.

    Parameters
    ----------
    b:
        Raw bytes to encode.

    Returns
    -------
    str
        Base64url-encoded string.

    """
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode a base64url string (no padding required)."""
    s = s.replace("-", "+").replace("_", "/")
    remainder = len(s) % 4
    if remainder:
        s += "=" * (4 - remainder)
    return base64.b64decode(s)


def _json_b64(obj: Any) -> str:  # noqa: ANN401
    return b64url_encode(json.dumps(obj).encode("utf-8"))


# --- Account keys --------------------------------------------------------


def generate_account_key() -> ec.EllipticCurvePrivateKey:
    """Generate a fresh P-256 account key."""
    return ec.generate_private_key(ec.SECP256R1())


def load_account_key(material: str) -> ec.EllipticCurvePrivateKey:
    """Load an account key from PEM text or base64url PKCS#8 DER.

    Raises
    ------
    ConfigurationError
        If the material cannot be parsed or is not a P-256 key.

    """
    material = material.strip()
    try:
        if material.startswith("-----BEGIN"):
            key = serialization.load_pem_private_key(material.encode("ascii"), password=None)
        else:
            key = serialization.load_der_private_key(b64url_decode(material), password=None)
    except (ValueError, TypeError) as exc:
        msg = f"Unable to parse ACME account key: {exc}"
        raise ConfigurationError(msg) from exc

    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(
        key.curve,
        ec.SECP256R1,
    ):
        msg = "ACME account key must be an EC P-256 private key"
        raise ConfigurationError(msg)
    return key


def export_account_key(key: ec.EllipticCurvePrivateKey) -> str:
    """Serialise an account key as base64url PKCS#8 DER (the config format)."""
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return b64url_encode(der)


# --- JWK / thumbprint ----------------------------------------------------


def public_jwk(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> dict[str, str]:
    """Return the public JWK of a P-256 key with 32-byte coordinates."""
    public_key = key.public_key() if isinstance(key, ec.EllipticCurvePrivateKey) else key
    numbers = public_key.public_numbers()
    return {
        "crv": _CURVE_NAME,
        "kty": "EC",
        "x": b64url_encode(numbers.x.to_bytes(_COMPONENT_LEN, "big")),
        "y": b64url_encode(numbers.y.to_bytes(_COMPONENT_LEN, "big")),
    }


def compute_thumbprint(jwk_dict: dict[str, Any]) -> str:
    """Compute the RFC 7638 JWK Thumbprint using SHA-256.

    Construct the canonical JSON representation with required members
    in lexicographic order, then return the base64url-encoded SHA-256
    hash.

    Parameters
    ----------
    jwk_dict:
        The JWK dictionary.

    Returns
    -------
    str
        Base64url-encoded thumbprint.

    """
    if jwk_dict.get("kty") != "EC":
        msg = f"Cannot compute thumbprint for kty '{jwk_dict.get('kty')}'"
        raise ValueError(msg)

    canonical = {
        "crv": jwk_dict["crv"],
        "kty": "EC",
        "x": jwk_dict["x"],
        "y": jwk_dict["y"],
    }
    # RFC 7638 requires members in lexicographic order, no whitespace
    canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical_json.encode("ascii")).digest()
    return b64url_encode(digest)


def key_authorization(token: str, jwk_dict: dict[str, Any]) -> str:
    """Compute the key authorization string: ``token.thumbprint``.

    This literal string is the HTTP-01 response body.
    """
    return f"{token}.{compute_thumbprint(jwk_dict)}"


def dns_txt_value(key_authz: str) -> str:
    """Return the DNS-01 TXT value: ``base64url(SHA-256(key_authz))``."""
    return b64url_encode(hashlib.sha256(key_authz.encode("utf-8")).digest())


# --- Signing -------------------------------------------------------------


def sign_request(
    key: ec.EllipticCurvePrivateKey,
    url: str,
    nonce: str,
    payload: Any = None,  # noqa: ANN401
    *,
    kid: str | None = None,
) -> dict[str, str]:
    """Build a flattened JWS for an ACME POST.

    Parameters
    ----------
    key:
        The account's P-256 private key.
    url:
        Target URL, copied into the protected header.
    nonce:
        The most recent ``Replay-Nonce``.
    payload:
        JSON-serialisable payload; ``None`` produces an empty payload
        segment (POST-as-GET).
    kid:
        Account URL.  When ``None`` the public JWK is embedded instead
        (only valid for ``newAccount``).

    Returns
    -------
    dict
        ``{"protected", "payload", "signature"}`` ready to be posted as
        ``application/jose+json``.

    """
    protected: dict[str, Any] = {"alg": ALGORITHM, "nonce": nonce, "url": url}
    if kid is None:
        protected["jwk"] = public_jwk(key)
    else:
        protected["kid"] = kid

    protected_b64 = _json_b64(protected)
    payload_b64 = "" if payload is None else _json_b64(payload)
    signing_input = f"{protected_b64}.{payload_b64}".encode()

    der_sig = key.sign(signing_input, ec.ECDSA(hashes.SHA256()))
    r, s = utils.decode_dss_signature(der_sig)
    raw_sig = r.to_bytes(_COMPONENT_LEN, "big") + s.to_bytes(_COMPONENT_LEN, "big")

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": b64url_encode(raw_sig),
    }


def external_account_binding(
    account_key: ec.EllipticCurvePrivateKey,
    eab_kid: str,
    hmac_key: str,
    url: str,
) -> dict[str, str]:
    """Build the RFC 8555 §7.3.4 ``externalAccountBinding`` JWS (HS256).

    Parameters
    ----------
    hmac_key:
        The base64url-encoded MAC key issued by the CA.

    """
    protected_b64 = _json_b64({"alg": "HS256", "kid": eab_kid, "url": url})
    payload_b64 = _json_b64(public_jwk(account_key))
    mac = _hmac.new(
        b64url_decode(hmac_key),
        f"{protected_b64}.{payload_b64}".encode("ascii"),
        hashlib.sha256,
    ).digest()
    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": b64url_encode(mac),
    }


# --- Verification --------------------------------------------------------


def verify_request(
    jws: dict[str, str],
    public_key: ec.EllipticCurvePublicKey,
) -> dict[str, Any]:
    """Verify a flattened ES256 JWS and return its protected header.

    Raises
    ------
    InvalidSignature
        If the signature does not match or is not 64 raw bytes.

    """
    header = json.loads(b64url_decode(jws["protected"]))
    if header.get("alg") != ALGORITHM:
        msg = f"Unsupported algorithm {header.get('alg')!r}"
        raise InvalidSignature(msg)

    signature = b64url_decode(jws["signature"])
    if len(signature) != 2 * _COMPONENT_LEN:
        msg = f"ES256 signature must be {2 * _COMPONENT_LEN} bytes, got {len(signature)}"
        raise InvalidSignature(msg)

    r = int.from_bytes(signature[:_COMPONENT_LEN], "big")
    s = int.from_bytes(signature[_COMPONENT_LEN:], "big")
    signing_input = f"{jws['protected']}.{jws['payload']}".encode()
    public_key.verify(
        utils.encode_dss_signature(r, s),
        signing_input,
        ec.ECDSA(hashes.SHA256()),
    )
    return header
