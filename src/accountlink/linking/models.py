# Account-linking flow models.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass
class FlowPayload:
    """Mutable payload carried inside the sealed state between flow steps."""

    client_state: str | None = None  # Opaque state the front-end asked us to echo back
    oauth_code: str | None = None  # Provider authorization code, single-use

    def to_dict(self) -> dict[str, Any]:
        return {"client_state": self.client_state, "oauth_code": self.oauth_code}

    @classmethod
    def from_dict(cls, data: Any) -> FlowPayload:
        if not isinstance(data, dict):
            return cls()
        return cls(
            client_state=data.get("client_state"),
            oauth_code=data.get("oauth_code"),
        )


class AccessTokenStatus(str, Enum):
    GRANTED = "granted"
    NEEDS_CONSENT = "needs_consent"


@dataclass(frozen=True)
class AccessTokenResult:
    """Either a usable access token or a pointer to where consent starts.

    Branch on ``status``; ``access_token`` is set only when granted and
    ``redirect_uri`` only when consent is needed.
    """

    status: AccessTokenStatus
    access_token: str | None = None
    expires_at: float | None = None
    redirect_uri: str | None = None

    @classmethod
    def granted(cls, access_token: str, expires_at: float | None = None) -> AccessTokenResult:
        return cls(AccessTokenStatus.GRANTED, access_token=access_token, expires_at=expires_at)

    @classmethod
    def needs_consent(cls, redirect_uri: str | None = None) -> AccessTokenResult:
        return cls(AccessTokenStatus.NEEDS_CONSENT, redirect_uri=redirect_uri)

    @property
    def is_granted(self) -> bool:
        return self.status is AccessTokenStatus.GRANTED


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of the provider callback: the claim code plus the caller's state."""

    claim_code: str
    client_state: str | None = None
