"""Tests for kcert.challenge.responder: the HTTP-01 token endpoint."""

from __future__ import annotations

import pytest

from kcert.challenge.responder import ChallengeTokenStore, create_responder_app


@pytest.fixture()
def tokens():
    return ChallengeTokenStore()


@pytest.fixture()
def client(tokens):
    app = create_responder_app(tokens)
    app.config["TESTING"] = True
    return app.test_client()


class TestResponder:
    def test_serves_key_authorization(self, client, tokens):
        tokens.add("tok", "tok.thumb")
        response = client.get("/.well-known/acme-challenge/tok")
        assert response.status_code == 200
        assert response.get_data(as_text=True) == "tok.thumb"
        assert response.headers["Content-Type"] == "application/octet-stream"

    def test_unknown_token_404(self, client):
        assert client.get("/.well-known/acme-challenge/missing").status_code == 404

    def test_removed_token_404(self, client, tokens):
        tokens.add("tok", "tok.thumb")
        tokens.remove("tok")
        assert client.get("/.well-known/acme-challenge/tok").status_code == 404

    def test_health_reports_pending(self, client, tokens):
        tokens.add("a", "a.k")
        tokens.add("b", "b.k")
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "ok", "pending_challenges": 2}


class TestTokenStore:
    def test_remove_missing_is_noop(self, tokens):
        tokens.remove("never-added")
        assert len(tokens) == 0
