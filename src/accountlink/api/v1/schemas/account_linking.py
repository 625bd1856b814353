# Account-linking schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, Field


class ConsentUrlResponse(BaseModel):
    """Provider authorize URL for a new linking flow."""

    consent_url: str


class ClaimRequest(BaseModel):
    """Claim a linked token with the code returned by the callback."""

    code: str | None = Field(default=None, description="Claim code from the callback redirect")
    code_verifier: str | None = Field(default=None, description="PKCE verifier for the challenge")


class ClaimResponse(BaseModel):
    claimed: bool = True


class AccessTokenResponse(BaseModel):
    """Exactly one of ``granted`` and ``needs_consent`` is set."""

    granted: str | None = None
    expires_at: float | None = None
    needs_consent: str | None = None


class LogoutResponse(BaseModel):
    logged_out: bool = True
