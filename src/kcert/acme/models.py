"""Typed views of the ACME resources kcert reads (RFC 8555 §7.1)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from kcert.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    OrderStatus,
)


@dataclass(frozen=True)
class Directory:
    new_nonce: str
    new_account: str
    new_order: str
    terms_of_service: str | None = None
    external_account_required: bool = False

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Directory:
        meta = data.get("meta") or {}
        return cls(
            new_nonce=data["newNonce"],
            new_account=data["newAccount"],
            new_order=data["newOrder"],
            terms_of_service=meta.get("termsOfService"),
            external_account_required=bool(meta.get("externalAccountRequired", False)),
        )


@dataclass(frozen=True)
class Challenge:
    type: str
    url: str
    token: str
    status: ChallengeStatus
    error: dict[str, Any] | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Challenge:
        return cls(
            type=data["type"],
            url=data["url"],
            token=data.get("token", ""),
            status=ChallengeStatus(data.get("status", "pending")),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class Authorization:
    url: str
    domain: str
    status: AuthorizationStatus
    challenges: tuple[Challenge, ...] = ()
    wildcard: bool = False

    @classmethod
    def from_json(cls, url: str, data: dict[str, Any]) -> Authorization:
        return cls(
            url=url,
            domain=data["identifier"]["value"],
            status=AuthorizationStatus(data["status"]),
            challenges=tuple(Challenge.from_json(c) for c in data.get("challenges", [])),
            wildcard=bool(data.get("wildcard", False)),
        )

    @property
    def identifier(self) -> str:
        """The identifier as ordered (wildcards keep their ``*.`` label)."""
        return f"*.{self.domain}" if self.wildcard else self.domain

    def challenge_for(self, challenge_type: str) -> Challenge | None:
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None

    def first_error(self) -> dict[str, Any] | None:
        for challenge in self.challenges:
            if challenge.error:
                return challenge.error
        return None


@dataclass(frozen=True)
class Order:
    url: str
    status: OrderStatus
    authorizations: tuple[str, ...]
    finalize: str
    certificate: str | None = None
    identifiers: tuple[str, ...] = field(default=())
    error: dict[str, Any] | None = None

    @classmethod
    def from_json(cls, url: str, data: dict[str, Any]) -> Order:
        return cls(
            url=url,
            status=OrderStatus(data["status"]),
            authorizations=tuple(data.get("authorizations", [])),
            finalize=data["finalize"],
            certificate=data.get("certificate"),
            identifiers=tuple(i["value"] for i in data.get("identifiers", [])),
            error=data.get("error"),
        )
