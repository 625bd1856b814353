# Account-linking error taxonomy.
# Created: 2026-10-19
#
# Every failure the linking flow can surface derives from AccountLinkingError.
# The ``code`` attribute is the stable, machine-readable reason the HTTP layer
# returns to callers.

from __future__ import annotations

__all__ = [
    "AccountLinkingError",
    "ValidationError",
    "InvalidToken",
    "Expired",
    "InvalidFlowState",
    "ChallengeMismatch",
    "Replayed",
    "ProviderError",
    "StoreError",
]


class AccountLinkingError(Exception):
    """Base class for account-linking failures."""

    code = "account_linking_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code is not None:
            self.code = code


class ValidationError(AccountLinkingError):
    """Malformed caller input. No state was touched."""

    code = "invalid_request"


class InvalidToken(AccountLinkingError):
    """Sealed state failed integrity or format checks."""

    code = "invalid_state"


class Expired(InvalidToken):
    """Sealed state is past its embedded expiry."""

    code = "expired_state"


class InvalidFlowState(AccountLinkingError):
    """Sealed state is genuine but the flow is not at the expected step."""

    code = "invalid_flow_state"


class ChallengeMismatch(AccountLinkingError):
    """PKCE verifier does not match the stored challenge."""

    code = "invalid_code_verifier"


class Replayed(AccountLinkingError):
    """The sealed state was already claimed once."""

    code = "state_already_used"


class ProviderError(AccountLinkingError):
    """The identity provider's token endpoint failed or was unreachable."""

    code = "provider_error"


class StoreError(AccountLinkingError):
    """Token persistence is unavailable."""

    code = "store_unavailable"
