"""ACME protocol client (RFC 8555).

One :class:`AcmeClient` is created per issuance.  It owns its HTTP
session, the cached directory, the account ``kid`` and the current
nonce, so concurrent issuances never share nonce state.

Every signed request carries the nonce returned by the previous
response; callers never handle nonces themselves.

Usage::

    client = AcmeClient(directory_url, account_key)
    client.create_account("ops@example.com", terms_accepted=True)
    order = client.create_order(["example.com"])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests

from kcert import __version__
from kcert.acme.models import Authorization, Challenge, Directory, Order
from kcert.core.errors import BAD_NONCE, ProtocolError
from kcert.core.jws import b64url_encode, external_account_binding, sign_request

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric import ec

log = logging.getLogger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"

_NONCE_HEADER = "Replay-Nonce"
_DEFAULT_TIMEOUT = 30


class AcmeClient:
    """Signs and sends ACME requests for one account key.

    Parameters
    ----------
    directory_url:
        URL of the ACME directory resource.
    account_key:
        The P-256 account private key.
    session:
        Optional :class:`requests.Session` (injected by tests).
    timeout:
        Per-request timeout in seconds.

    """

    def __init__(
        self,
        directory_url: str,
        account_key: ec.EllipticCurvePrivateKey,
        *,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self._directory_url = directory_url
        self._key = account_key
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", f"kcert/{__version__}")
        self._timeout = timeout
        self._directory: Directory | None = None
        self._nonce: str | None = None
        self._kid: str | None = None

    @property
    def kid(self) -> str | None:
        """Account URL once :meth:`create_account` has succeeded."""
        return self._kid

    @property
    def nonce(self) -> str | None:
        """The nonce the next signed request will carry."""
        return self._nonce

    # -- unsigned requests ------------------------------------------------

    def read_directory(self) -> Directory:
        """Fetch (once) and return the directory."""
        if self._directory is None:
            response = self._session.get(self._directory_url, timeout=self._timeout)
            if not response.ok:
                raise ProtocolError.from_response(response)
            self._directory = Directory.from_json(response.json())
            log.debug("Loaded ACME directory from %s", self._directory_url)
        return self._directory

    def get_nonce(self) -> str:
        """Fetch a fresh nonce from ``newNonce`` and make it current."""
        directory = self.read_directory()
        response = self._session.head(directory.new_nonce, timeout=self._timeout)
        if not response.ok:
            raise ProtocolError.from_response(response)
        nonce = response.headers.get(_NONCE_HEADER)
        if not nonce:
            raise ProtocolError(
                response.status_code,
                "newNonce response carried no Replay-Nonce header",
                url=directory.new_nonce,
            )
        self._nonce = nonce
        return nonce

    # -- account ----------------------------------------------------------

    def create_account(
        self,
        email: str | None,
        *,
        terms_accepted: bool,
        eab_kid: str | None = None,
        eab_hmac_key: str | None = None,
    ) -> str:
        """Create the account, or resolve the existing one for this key.

        Returns
        -------
        str
            The account URL (``kid``) from the ``Location`` header.

        """
        directory = self.read_directory()
        payload: dict[str, Any] = {"termsOfServiceAgreed": terms_accepted}
        if email:
            payload["contact"] = [f"mailto:{email}"]
        if eab_kid and eab_hmac_key:
            payload["externalAccountBinding"] = external_account_binding(
                self._key,
                eab_kid,
                eab_hmac_key,
                directory.new_account,
            )

        response = self._post(directory.new_account, payload, use_jwk=True)
        kid = response.headers.get("Location")
        if not kid:
            raise ProtocolError(
                response.status_code,
                "newAccount response carried no Location header",
                url=directory.new_account,
            )
        self._kid = kid
        log.debug("Using ACME account %s", kid)
        return kid

    # -- orders -----------------------------------------------------------

    def create_order(self, hosts: Sequence[str]) -> Order:
        """Create an order for *hosts* (wildcards are passed unchanged)."""
        directory = self.read_directory()
        payload = {"identifiers": [{"type": "dns", "value": h} for h in hosts]}
        response = self._post(directory.new_order, payload)
        url = response.headers.get("Location", "")
        return Order.from_json(url, response.json())

    def get_order(self, url: str) -> Order:
        response = self._post(url, None)
        return Order.from_json(url, response.json())

    def finalize_order(self, url: str, csr_der: bytes) -> Order:
        """Submit the CSR.  *url* is the order's ``finalize`` URL."""
        response = self._post(url, {"csr": b64url_encode(csr_der)})
        order_url = response.headers.get("Location", "")
        return Order.from_json(order_url, response.json())

    def download_certificate(self, url: str) -> str:
        """Download the PEM certificate chain."""
        response = self._post(url, None, accept=PEM_CHAIN_CONTENT_TYPE)
        return response.text

    # -- authorizations ---------------------------------------------------

    def get_authorization(self, url: str) -> Authorization:
        response = self._post(url, None)
        return Authorization.from_json(url, response.json())

    def trigger_challenge(self, url: str) -> Challenge:
        """Tell the server the challenge evidence is in place."""
        response = self._post(url, {})
        return Challenge.from_json(response.json())

    # -- transport --------------------------------------------------------

    def _post(
        self,
        url: str,
        payload: Any,  # noqa: ANN401
        *,
        use_jwk: bool = False,
        accept: str | None = None,
        retry_bad_nonce: bool = True,
    ) -> requests.Response:
        """Sign and POST, threading the nonce through the response.

        A single ``badNonce`` rejection is retried with the nonce the
        server returned alongside it.  Any other non-2xx response is a
        :class:`ProtocolError`.
        """
        if not use_jwk and self._kid is None:
            msg = "Account must be created before signing with kid"
            raise RuntimeError(msg)
        if self._nonce is None:
            self.get_nonce()

        body = sign_request(
            self._key,
            url,
            self._nonce,
            payload,
            kid=None if use_jwk else self._kid,
        )
        headers = {"Content-Type": JOSE_CONTENT_TYPE}
        if accept:
            headers["Accept"] = accept

        response = self._session.post(url, json=body, headers=headers, timeout=self._timeout)
        # The nonce is single use: forget it even if the response omits a new one
        self._nonce = response.headers.get(_NONCE_HEADER)

        if response.ok:
            return response

        error = ProtocolError.from_response(response)
        if error.problem_type == BAD_NONCE and retry_bad_nonce:
            log.info("ACME server rejected nonce for %s, retrying once", url)
            return self._post(
                url,
                payload,
                use_jwk=use_jwk,
                accept=accept,
                retry_bad_nonce=False,
            )
        raise error
