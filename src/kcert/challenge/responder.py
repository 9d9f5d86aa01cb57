"""HTTP-01 token responder.

A small Flask application that serves the key authorization for every
challenge token currently being provisioned, plus a health probe.  The
temporary challenge ingress routes
``/.well-known/acme-challenge/`` on each host to this responder.

Usage::

    tokens = ChallengeTokenStore()
    server = ResponderServer(create_responder_app(tokens), "0.0.0.0", 8080)
    server.start()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from flask import Blueprint, Flask, abort, current_app, jsonify, make_response
from werkzeug.serving import make_server

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

log = logging.getLogger(__name__)

CHALLENGE_PATH = "/.well-known/acme-challenge/"


class ChallengeTokenStore:
    """Thread-safe map of challenge token to key authorization."""

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, token: str, key_authorization: str) -> None:
        with self._lock:
            self._tokens[token] = key_authorization

    def remove(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def get(self, token: str) -> str | None:
        with self._lock:
            return self._tokens.get(token)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


challenge_bp = Blueprint("challenge", __name__)


@challenge_bp.route(CHALLENGE_PATH + "<token>", methods=["GET"])
def serve_token(token: str) -> ResponseReturnValue:
    """GET /.well-known/acme-challenge/<token> returns the key authorization."""
    tokens: ChallengeTokenStore = current_app.extensions["kcert_tokens"]
    key_authz = tokens.get(token)
    if key_authz is None:
        log.info("Unknown challenge token requested: %s", token)
        abort(404)
    response = make_response(key_authz, 200)
    response.headers["Content-Type"] = "application/octet-stream"
    return response


@challenge_bp.route("/health", methods=["GET"])
def health() -> ResponseReturnValue:
    tokens: ChallengeTokenStore = current_app.extensions["kcert_tokens"]
    return jsonify({"status": "ok", "pending_challenges": len(tokens)})


def create_responder_app(tokens: ChallengeTokenStore) -> Flask:
    """Create the responder Flask application bound to *tokens*."""
    app = Flask("kcert")
    app.extensions["kcert_tokens"] = tokens
    app.register_blueprint(challenge_bp)
    return app


class ResponderServer:
    """Run the responder WSGI app on a daemon thread."""

    def __init__(self, app: Flask, host: str, port: int) -> None:
        self._server = make_server(host, port, app, threaded=True)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="challenge-responder",
            daemon=True,
        )
        self._thread.start()
        log.info("Challenge responder listening on port %d", self._server.server_port)

    def stop(self) -> None:
        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
            log.info("Challenge responder stopped")
