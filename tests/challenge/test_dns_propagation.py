"""Tests for DnsChallengeProvider: record naming and propagation verification."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import dns.resolver
import pytest

from kcert.challenge.base import DnsChallengeProvider
from kcert.challenge.dnsutil import registrable_domain
from kcert.config.settings import build_settings
from kcert.core.errors import PropagationTimeout
from kcert.core.jws import dns_txt_value
from kcert.core.types import ProviderKind


class _MemoryDns(DnsChallengeProvider):
    kind = ProviderKind.ROUTE53

    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.created: list[tuple[str, str, str]] = []
        self.deleted: list[tuple[str, str, str]] = []

    def create_txt_record(self, domain, record_name, record_value):
        self.created.append((domain, record_name, record_value))

    def delete_txt_record(self, domain, record_name, record_value):
        self.deleted.append((domain, record_name, record_value))


def _dns_settings(**dns):
    dns.setdefault("propagation_seconds", 0)
    return build_settings({"challenge": {"dns": dns}}).challenge.dns


def _txt(value: str):
    return SimpleNamespace(strings=[value.encode("ascii")])


class TestRecordNaming:
    @pytest.mark.parametrize(
        ("domain", "expected"),
        [
            ("example.com", "_acme-challenge.example.com"),
            ("*.example.com", "_acme-challenge.example.com"),
            ("a.b.example.com", "_acme-challenge.a.b.example.com"),
        ],
    )
    def test_record_name(self, domain, expected):
        assert DnsChallengeProvider.record_name(domain) == expected

    @pytest.mark.parametrize(
        ("domain", "expected"),
        [
            ("example.com", "example.com"),
            ("*.Sub.Example.com.", "example.com"),
            ("a.b.c.example.org", "example.org"),
        ],
    )
    def test_registrable_domain(self, domain, expected):
        assert registrable_domain(domain) == expected


class TestProvisionSymmetry:
    def test_create_and_delete_same_record(self):
        provider = _MemoryDns(_dns_settings())
        state = provider.provision(domain="*.example.com", token="tok", key_authorization="tok.k")
        provider.deprovision(state)
        expected = ("example.com", "_acme-challenge.example.com", dns_txt_value("tok.k"))
        assert provider.created == [expected]
        assert provider.deleted == [expected]


class TestVerifyPropagation:
    def test_waits_until_value_visible(self):
        provider = _MemoryDns(_dns_settings(verify_propagation=True, resolvers=["1.1.1.1"]))
        value = dns_txt_value("tok.k")
        with patch("kcert.challenge.base.dns.resolver.Resolver") as resolver_cls:
            resolver = resolver_cls.return_value
            resolver.resolve.side_effect = [
                dns.resolver.NXDOMAIN(),
                [_txt("stale")],
                [_txt("stale"), _txt(value)],
            ]
            provider.provision(domain="example.com", token="tok", key_authorization="tok.k")
        assert resolver.resolve.call_count == 3
        assert resolver.nameservers == ["1.1.1.1"]

    def test_gives_up_after_retries(self):
        provider = _MemoryDns(_dns_settings(verify_propagation=True, verify_retries=2))
        with patch("kcert.challenge.base.dns.resolver.Resolver") as resolver_cls:
            resolver_cls.return_value.resolve.side_effect = dns.resolver.NoAnswer()
            with pytest.raises(PropagationTimeout, match="2 checks"):
                provider.provision(domain="example.com", token="tok", key_authorization="tok.k")
