"""PKCE (RFC 7636) code verifier checks."""

import base64
import hashlib
import hmac

from beartype import beartype

S256 = "S256"
PLAIN = "plain"
SUPPORTED_METHODS = (S256, PLAIN)


@beartype
def compute_s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@beartype
def verify_code_verifier(
    code_verifier: str,
    code_challenge: str,
    code_challenge_method: str | None = None,
) -> bool:
    """Check a verifier against the challenge recorded at authorization time.

    A missing method means ``plain`` (RFC 7636 section 4.3). Unknown methods
    never verify.
    """
    method = code_challenge_method or PLAIN
    if method == S256:
        expected = compute_s256_challenge(code_verifier)
    elif method == PLAIN:
        expected = code_verifier
    else:
        return False

    return hmac.compare_digest(expected.encode("utf-8"), code_challenge.encode("utf-8"))
