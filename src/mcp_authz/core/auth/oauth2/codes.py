"""Authorization code issuance and single-use redemption."""

import secrets

from beartype import beartype

from ...config import Settings
from ...logging_utils import get_logger, redact
from ...result_types import Result
from .errors import OAuth2Error, OAuth2ErrorKind
from .models import AuthorizationCode, Clock, CodeGrant, utc_now
from .pkce import verify_code_verifier
from .storage import CodeCheck, OAuth2Store

logger = get_logger(__name__)


def _redemption_check(
    client_id: str, redirect_uri: str, code_verifier: str | None
) -> CodeCheck:
    """Build the bindings a stored code must satisfy before it is consumed."""

    def check(record: AuthorizationCode) -> OAuth2Error | None:
        if record.client_id != client_id:
            return OAuth2Error.of(OAuth2ErrorKind.CLIENT_MISMATCH)
        if record.redirect_uri != redirect_uri:
            return OAuth2Error.of(OAuth2ErrorKind.REDIRECT_MISMATCH)
        if record.code_challenge:
            if not code_verifier:
                return OAuth2Error.of(
                    OAuth2ErrorKind.INVALID_GRANT, "code_verifier is required"
                )
            if not verify_code_verifier(
                code_verifier, record.code_challenge, record.code_challenge_method
            ):
                return OAuth2Error.of(OAuth2ErrorKind.PKCE_MISMATCH)
        return None

    return check


class AuthorizationCodeIssuer:
    """Issues short-lived codes and redeems each one at most once."""

    def __init__(
        self, store: OAuth2Store, settings: Settings, clock: Clock = utc_now
    ) -> None:
        """Initialize issuer over a store."""
        self._store = store
        self._ttl = settings.authorization_code_ttl
        self._clock = clock

    @beartype
    async def issue(
        self,
        client_id: str,
        redirect_uri: str,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        scope: str | None = None,
        resource: str | None = None,
    ) -> str:
        """Mint and persist a code. The caller has already validated the client."""
        code = secrets.token_hex(32)
        await self._store.save_authorization_code(
            AuthorizationCode(
                code=code,
                client_id=client_id,
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                scope=scope,
                resource=resource,
                expires_at=self._clock() + self._ttl,
            )
        )
        logger.debug("Issued authorization code %s for %s", redact(code), client_id)
        return code

    @beartype
    async def redeem(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> Result[CodeGrant, OAuth2Error]:
        """Consume a code if every binding holds.

        Failed binding checks leave the code in place; an expired code is
        removed. A code that was already redeemed reads as unknown.
        """
        result = await self._store.redeem_authorization_code(
            code,
            self._clock(),
            _redemption_check(client_id, redirect_uri, code_verifier),
        )
        if result.is_err():
            error = result.unwrap_err()
            logger.info(
                "Authorization code %s rejected for %s: %s",
                redact(code),
                client_id,
                error.kind.value,
            )
        return result.map(
            lambda record: CodeGrant(scope=record.scope, resource=record.resource)
        )
