"""Tests for kcert.challenge.cloudflare: REST calls against a fake session."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from kcert.challenge.cloudflare import CloudflareProvider
from kcert.config.settings import build_settings
from kcert.core.errors import ProvisioningError
from kcert.core.jws import dns_txt_value
from tests.fakes import FakeResponse

API = "https://api.cloudflare.test/client/v4/"


class _FakeCloudflare:
    """Routes ``session.request`` calls to canned responses and records them."""

    def __init__(self, *, zones=None, records=None) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str, dict | None, dict | None]] = []
        self.zones = zones if zones is not None else [{"id": "zone-1", "name": "example.com"}]
        self.records = records if records is not None else []
        self.fail_with: Exception | None = None

    def request(self, method, url, *, params=None, json=None, timeout=None):
        self.calls.append((method, url.removeprefix(API), params, json))
        if self.fail_with is not None:
            raise self.fail_with
        path = url.removeprefix(API)
        if method == "GET" and path == "zones":
            return FakeResponse(200, {"success": True, "result": self.zones})
        if method == "GET" and path.endswith("/dns_records"):
            return FakeResponse(200, {"success": True, "result": self.records})
        if method == "POST":
            return FakeResponse(200, {"success": True, "result": {"id": "rec-new"}})
        if method == "DELETE":
            return FakeResponse(200, {"success": True, "result": {"id": path.rsplit("/", 1)[-1]}})
        return FakeResponse(404, {"success": False})


def _provider(session) -> CloudflareProvider:
    settings = build_settings(
        {
            "challenge": {
                "dns": {"provider": "cloudflare", "propagation_seconds": 0},
                "cloudflare": {"api_token": "secret-token", "api_url": API},
            },
        },
    ).challenge
    return CloudflareProvider(settings.dns, settings.cloudflare, session=session)


class TestCloudflare:
    def test_bearer_token_header(self):
        session = _FakeCloudflare()
        _provider(session)
        assert session.headers["Authorization"] == "Bearer secret-token"

    def test_zone_lookup_by_registrable_domain(self):
        session = _FakeCloudflare()
        provider = _provider(session)
        assert provider.find_zone_id("a.b.example.com") == "zone-1"
        assert session.calls[0] == ("GET", "zones", {"name": "example.com"}, None)

    def test_zone_cached(self):
        session = _FakeCloudflare()
        provider = _provider(session)
        provider.find_zone_id("a.example.com")
        provider.find_zone_id("b.example.com")
        assert [c for c in session.calls if c[1] == "zones"] == [session.calls[0]]

    def test_missing_zone(self):
        provider = _provider(_FakeCloudflare(zones=[]))
        with pytest.raises(ProvisioningError, match="No Cloudflare zone"):
            provider.find_zone_id("example.com")

    def test_create_record(self):
        session = _FakeCloudflare()
        provider = _provider(session)
        provider.provision(domain="www.example.com", token="tok", key_authorization="tok.thumb")
        method, path, _, payload = session.calls[-1]
        assert (method, path) == ("POST", "zones/zone-1/dns_records")
        assert payload == {
            "type": "TXT",
            "name": "_acme-challenge.www.example.com",
            "content": dns_txt_value("tok.thumb"),
            "ttl": 120,
        }

    def test_delete_by_listed_ids(self):
        session = _FakeCloudflare(records=[{"id": "rec-1"}, {"id": "rec-2"}])
        provider = _provider(session)
        state = provider.initial_state(domain="example.com", token="tok", key_authorization="tok.k")
        provider.deprovision(state)
        listing = session.calls[1]
        assert listing[0:3] == (
            "GET",
            "zones/zone-1/dns_records",
            {
                "type": "TXT",
                "name": "_acme-challenge.example.com",
                "content": dns_txt_value("tok.k"),
            },
        )
        deletes = [c[1] for c in session.calls if c[0] == "DELETE"]
        assert deletes == ["zones/zone-1/dns_records/rec-1", "zones/zone-1/dns_records/rec-2"]

    def test_delete_missing_record_warns(self, caplog):
        session = _FakeCloudflare(records=[])
        provider = _provider(session)
        state = provider.initial_state(domain="example.com", token="tok", key_authorization="tok.k")
        with caplog.at_level("WARNING", logger="kcert.challenge.cloudflare"):
            provider.deprovision(state)
        assert "already deleted" in caplog.text
        assert not [c for c in session.calls if c[0] == "DELETE"]

    def test_http_error(self):
        session = MagicMock()
        session.headers = {}
        session.request.return_value = FakeResponse(403, {"success": False}, text="forbidden")
        with pytest.raises(ProvisioningError, match="HTTP 403"):
            _provider(session).find_zone_id("example.com")

    def test_transport_error(self):
        session = _FakeCloudflare()
        session.fail_with = requests.ConnectionError("unreachable")
        with pytest.raises(ProvisioningError, match="unreachable"):
            _provider(session).find_zone_id("example.com")
