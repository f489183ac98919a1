"""OAuth2 error kinds reported to token and authorization callers."""

from enum import Enum
from typing import Any

from attrs import field, frozen
from beartype import beartype

from ...database import StorageError


class OAuth2ErrorKind(str, Enum):
    """Closed set of recoverable OAuth2 failures."""

    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    EXPIRED_GRANT = "expired_grant"
    CLIENT_MISMATCH = "client_mismatch"
    REDIRECT_MISMATCH = "redirect_mismatch"
    PKCE_MISMATCH = "pkce_mismatch"
    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"


# RFC 6749 section 5.2 collapses every grant failure into invalid_grant.
_WIRE_CODES: dict[OAuth2ErrorKind, str] = {
    OAuth2ErrorKind.INVALID_CLIENT: "invalid_client",
    OAuth2ErrorKind.INVALID_GRANT: "invalid_grant",
    OAuth2ErrorKind.EXPIRED_GRANT: "invalid_grant",
    OAuth2ErrorKind.CLIENT_MISMATCH: "invalid_grant",
    OAuth2ErrorKind.REDIRECT_MISMATCH: "invalid_grant",
    OAuth2ErrorKind.PKCE_MISMATCH: "invalid_grant",
    OAuth2ErrorKind.INVALID_REQUEST: "invalid_request",
    OAuth2ErrorKind.UNSUPPORTED_GRANT_TYPE: "unsupported_grant_type",
}

_DEFAULT_DESCRIPTIONS: dict[OAuth2ErrorKind, str] = {
    OAuth2ErrorKind.INVALID_CLIENT: "Client authentication failed",
    OAuth2ErrorKind.INVALID_GRANT: "Invalid authorization grant",
    OAuth2ErrorKind.EXPIRED_GRANT: "Authorization grant has expired",
    OAuth2ErrorKind.CLIENT_MISMATCH: "Grant was issued to a different client",
    OAuth2ErrorKind.REDIRECT_MISMATCH: "Redirect URI mismatch",
    OAuth2ErrorKind.PKCE_MISMATCH: "PKCE code verifier validation failed",
    OAuth2ErrorKind.INVALID_REQUEST: "Malformed request",
    OAuth2ErrorKind.UNSUPPORTED_GRANT_TYPE: "Grant type not supported",
}


@frozen
class OAuth2Error:
    """A tagged OAuth2 failure carried inside ``Err``."""

    kind: OAuth2ErrorKind = field()
    description: str | None = field(default=None)

    @classmethod
    def of(cls, kind: OAuth2ErrorKind, description: str | None = None) -> "OAuth2Error":
        """Build an error, falling back to the kind's stock description."""
        return cls(kind=kind, description=description or _DEFAULT_DESCRIPTIONS[kind])

    @property
    def error(self) -> str:
        """RFC 6749 error code for the wire."""
        return _WIRE_CODES[self.kind]

    @property
    def status_code(self) -> int:
        """HTTP status the token endpoint should answer with."""
        return 401 if self.kind is OAuth2ErrorKind.INVALID_CLIENT else 400

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to OAuth2 error response."""
        response: dict[str, Any] = {"error": self.error}
        if self.description:
            response["error_description"] = self.description
        return response

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.description or self.error}"


__all__ = ["OAuth2Error", "OAuth2ErrorKind", "StorageError"]
