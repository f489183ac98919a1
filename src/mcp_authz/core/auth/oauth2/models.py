# MCP AuthZ - OAuth 2.1 Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""OAuth2 entities persisted by the store and shapes returned to callers.

Entities (clients, codes, tokens) and wire shapes are immutable Pydantic
models. Small in-process values passed between components are attrs classes.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from attrs import field, frozen
from beartype import beartype
from pydantic import BaseModel, ConfigDict, Field

Clock = Callable[[], datetime]

BEARER = "Bearer"


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


class OAuth2Model(BaseModel):
    """Base model for all OAuth2 entities.

    Strings are stored exactly as presented; bindings are later compared
    byte for byte.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        validate_default=True,
    )


class ExpiringModel(OAuth2Model):
    """Entity with an absolute expiry."""

    expires_at: datetime = Field(..., description="Absolute expiry (UTC)")

    @beartype
    def is_expired(self, now: datetime) -> bool:
        """A grant stops being usable at the exact instant it expires."""
        return now >= self.expires_at


class RegisteredClient(OAuth2Model):
    """Identity presented by a calling application."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    client_name: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    created_at: datetime = Field(..., description="Registration time")


class AuthorizationCode(ExpiringModel):
    """Single-use credential binding a client to a redirect URI."""

    code: str = Field(..., min_length=1)
    client_id: str
    redirect_uri: str
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    scope: str | None = None
    resource: str | None = None


class AccessToken(ExpiringModel):
    """Short-lived bearer credential, paired with a refresh token."""

    token: str = Field(..., min_length=1)
    client_id: str
    scope: str | None = None
    resource: str | None = None
    refresh_token: str | None = None


class RefreshToken(ExpiringModel):
    """Long-lived credential used only to mint a new pair."""

    token: str = Field(..., min_length=1)
    client_id: str
    scope: str | None = None
    resource: str | None = None
    access_token: str | None = None


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 registration request; every field is optional."""

    # Registration bodies carry extra RFC 7591 metadata (logo_uri, contacts, ...)
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    client_name: str | None = None
    redirect_uris: list[str] | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None
    scope: str | None = None


class ClientRegistrationResponse(OAuth2Model):
    """RFC 7591 registration response."""

    client_id: str
    client_secret: str
    client_name: str | None = None
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str]
    token_endpoint_auth_method: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0  # never expires

    @classmethod
    def from_client(cls, client: RegisteredClient) -> "ClientRegistrationResponse":
        """Build the response for a freshly registered client."""
        return cls(
            client_id=client.client_id,
            client_secret=client.client_secret,
            client_name=client.client_name,
            redirect_uris=client.redirect_uris,
            grant_types=client.grant_types,
            response_types=client.response_types,
            token_endpoint_auth_method=client.token_endpoint_auth_method,
            client_id_issued_at=int(client.created_at.timestamp()),
        )


class TokenResponse(OAuth2Model):
    """RFC 6749 section 5.1 token response."""

    access_token: str
    token_type: str = BEARER
    expires_in: int = Field(..., ge=0)
    refresh_token: str
    scope: str | None = None

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Serialise, omitting scope when none was granted."""
        return self.model_dump(exclude_none=True)


@frozen
class TokenPair:
    """Freshly minted access/refresh values and what they were granted for."""

    access_token: str = field()
    refresh_token: str = field()
    scope: str | None = field(default=None)
    resource: str | None = field(default=None)


@frozen
class CodeGrant:
    """What a redeemed authorization code was issued for."""

    scope: str | None = field(default=None)
    resource: str | None = field(default=None)


@frozen
class RefreshGrant:
    """What a live refresh token is bound to."""

    client_id: str = field()
    scope: str | None = field(default=None)
    resource: str | None = field(default=None)


@frozen
class RegisteredIdentity:
    """A client found in the registry."""

    client: RegisteredClient = field()

    @property
    def client_id(self) -> str:
        return self.client.client_id

    @property
    def client_secret(self) -> str:
        return self.client.client_secret


@frozen
class FallbackIdentity:
    """The statically configured client, used when it is not in the registry."""

    client_id: str = field()
    client_secret: str = field(repr=False)


ClientIdentity = RegisteredIdentity | FallbackIdentity


@frozen
class SweepResult:
    """Rows removed by one expiry sweep."""

    authorization_codes: int = field(default=0)
    access_tokens: int = field(default=0)
    refresh_tokens: int = field(default=0)

    @property
    def total(self) -> int:
        return self.authorization_codes + self.access_tokens + self.refresh_tokens
