# Account-linking router - consent URL, provider start/callback, claim, token, logout.
# Created: 2026-10-19
#
# Validation and redirects only; every decision is made by AccountLinkingFlow.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from accountlink.api.deps import Identity, get_current_identity, get_flow
from accountlink.api.v1.schemas.account_linking import (
    AccessTokenResponse,
    ClaimRequest,
    ClaimResponse,
    ConsentUrlResponse,
    LogoutResponse,
)
from accountlink.errors import AccountLinkingError, ProviderError, StoreError
from accountlink.linking.flow import AccountLinkingFlow
from accountlink.linking.models import AccessTokenStatus
from accountlink.security.rate_limiter import auth_limiter, claim_limiter

logger = logging.getLogger(__name__)

# Authenticated routes: the caller's platform identity is required.
router = APIRouter(tags=["Account Linking"])

# Anonymous routes hit by the browser on its way to and from the provider.
oauth_router = APIRouter(tags=["OAuth"])


def _http_error(exc: AccountLinkingError) -> HTTPException:
    if isinstance(exc, StoreError):
        return HTTPException(status_code=503, detail=exc.code)
    if isinstance(exc, ProviderError):
        return HTTPException(status_code=502, detail=exc.code)
    return HTTPException(status_code=400, detail=exc.code)


def _too_many_requests() -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Too many requests"})


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/account-linking/auth-url", response_model=ConsentUrlResponse)
async def create_consent_url(
    code_challenge: str | None = Query(None),
    identity: Identity = Depends(get_current_identity),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Start a linking flow for the caller's PKCE *code_challenge*."""
    if not code_challenge:
        raise HTTPException(status_code=400, detail="No code challenge in query parameters")
    try:
        url = flow.create_consent_uri(
            code_challenge, tenant_id=identity.tenant_id, user_id=identity.user_id
        )
    except AccountLinkingError as e:
        raise _http_error(e) from e
    return ConsentUrlResponse(consent_url=url)


@router.put("/account-linking/claim", response_model=ClaimResponse)
async def claim_token(
    body: ClaimRequest,
    identity: Identity = Depends(get_current_identity),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Claim the linked token with the callback's claim code and the PKCE verifier."""
    if not claim_limiter.allow(f"{identity.tenant_id}/{identity.user_id}"):
        return _too_many_requests()
    if not body.code:
        raise HTTPException(status_code=400, detail="No code in request")
    if not body.code_verifier:
        raise HTTPException(status_code=400, detail="No code verifier in request")

    try:
        await flow.claim_token(
            body.code, body.code_verifier, identity.tenant_id, identity.user_id
        )
    except AccountLinkingError as e:
        logger.info("Claim rejected for %s/%s: %s", identity.tenant_id, identity.user_id, e.code)
        raise _http_error(e) from e
    return ClaimResponse()


@router.get("/account-linking/token", response_model=AccessTokenResponse)
async def get_access_token(
    identity: Identity = Depends(get_current_identity),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Return the caller's provider access token, or where to go to link an account."""
    try:
        result = await flow.get_access_token(identity.tenant_id, identity.user_id)
    except AccountLinkingError as e:
        raise _http_error(e) from e

    if result.status is AccessTokenStatus.GRANTED:
        return AccessTokenResponse(granted=result.access_token, expires_at=result.expires_at)
    return AccessTokenResponse(needs_consent=result.redirect_uri)


@router.delete("/account-linking/token", response_model=LogoutResponse)
async def logout(
    identity: Identity = Depends(get_current_identity),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Unlink the caller's provider account. Idempotent."""
    try:
        flow.logout(identity.tenant_id, identity.user_id)
    except AccountLinkingError as e:
        raise _http_error(e) from e
    return LogoutResponse()


@oauth_router.get("/oauth/start")
async def start_authorization(
    request: Request,
    state: str | None = Query(None),
    token_state: str | None = Query(None),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Attach the front-end's state and redirect to the provider's consent page."""
    if not auth_limiter.allow(_client_ip(request)):
        return _too_many_requests()
    if not state:
        raise HTTPException(status_code=400, detail="No state in query parameters")
    if not token_state:
        raise HTTPException(status_code=400, detail="No token_state in query parameters")

    try:
        url = flow.start(token_state, state)
    except AccountLinkingError as e:
        raise _http_error(e) from e
    return RedirectResponse(url, status_code=302)


@oauth_router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    state: str | None = Query(None),
    code: str | None = Query(None),
    error: str | None = Query(None),
    flow: AccountLinkingFlow = Depends(get_flow),
):
    """Provider redirect target. Hands the caller a claim code via redirect."""
    if not auth_limiter.allow(_client_ip(request)):
        return _too_many_requests()
    if not state:
        raise HTTPException(status_code=400, detail="No state in query parameters")

    try:
        if error:
            logger.info("Provider returned error on callback: %s", error)
            return RedirectResponse(flow.callback_error_redirect(state, error), status_code=302)
        if not code:
            raise HTTPException(status_code=400, detail="No code in query parameters")
        result = flow.handle_callback(state, code)
    except AccountLinkingError as e:
        logger.info("Callback rejected: %s", e.code)
        raise _http_error(e) from e
    return RedirectResponse(flow.callback_redirect(result), status_code=302)
