"""PKCE (RFC 7636) S256 challenge derivation and verification."""

import base64
import hashlib
import hmac
import secrets

__all__ = ["create_challenge", "generate_verifier", "verify"]


def generate_verifier(nbytes: int = 32) -> str:
    """Return a random URL-safe code verifier (43 chars for the default size)."""
    return secrets.token_urlsafe(nbytes)


def create_challenge(verifier: str) -> str:
    """S256 = BASE64URL(SHA256(code_verifier)), unpadded."""
    return (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )


def verify(stored_challenge: str, supplied_verifier: str) -> bool:
    """Return True if *supplied_verifier* hashes to *stored_challenge*.

    Comparison is exact and case-sensitive.
    """
    if not stored_challenge or not supplied_verifier:
        return False
    expected = create_challenge(supplied_verifier)
    return hmac.compare_digest(stored_challenge.encode(), expected.encode())
