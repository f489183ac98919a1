"""OAuth 2.1 authorization server implementation."""

from .clients import ClientRegistry
from .codes import AuthorizationCodeIssuer
from .errors import OAuth2Error, OAuth2ErrorKind, StorageError
from .models import (
    AccessToken,
    AuthorizationCode,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    CodeGrant,
    FallbackIdentity,
    RefreshGrant,
    RefreshToken,
    RegisteredClient,
    RegisteredIdentity,
    SweepResult,
    TokenPair,
    TokenResponse,
)
from .pkce import compute_s256_challenge, verify_code_verifier
from .server import OAuth2Server
from .storage import (
    SCHEMA_SQL,
    InMemoryOAuth2Store,
    OAuth2Store,
    PostgresOAuth2Store,
    TokenStatus,
    create_store,
)
from .sweeper import ExpirySweeper
from .tokens import TokenIssuer, extract_bearer_token

__all__ = [
    "OAuth2Server",
    "OAuth2Error",
    "OAuth2ErrorKind",
    "StorageError",
    "ClientRegistry",
    "AuthorizationCodeIssuer",
    "TokenIssuer",
    "ExpirySweeper",
    "OAuth2Store",
    "InMemoryOAuth2Store",
    "PostgresOAuth2Store",
    "TokenStatus",
    "SCHEMA_SQL",
    "create_store",
    "compute_s256_challenge",
    "verify_code_verifier",
    "extract_bearer_token",
    "RegisteredClient",
    "AuthorizationCode",
    "AccessToken",
    "RefreshToken",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "TokenResponse",
    "TokenPair",
    "CodeGrant",
    "RefreshGrant",
    "RegisteredIdentity",
    "FallbackIdentity",
    "SweepResult",
]
