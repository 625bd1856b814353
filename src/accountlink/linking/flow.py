# Account-linking OAuth flow: consent -> callback -> claim -> cached access.
# Created: 2026-10-19
#
# The sealed state minted at consent time is the only flow record. It goes
# out as the provider's "state" parameter, comes back on the callback, gets
# the authorization code sealed into it and is handed to the caller as its
# claim code. Nothing about an in-flight flow is stored server-side.

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from accountlink.config import Settings, get_settings
from accountlink.errors import (
    ChallengeMismatch,
    InvalidFlowState,
    ProviderError,
    Replayed,
    ValidationError,
)
from accountlink.integrations.provider import ProviderClient, with_query
from accountlink.integrations.token_store import OAuthToken, TokenStore
from accountlink.linking.models import AccessTokenResult, CallbackResult, FlowPayload
from accountlink.security import pkce
from accountlink.security.audit import AuditLogger, AuditSeverity, get_audit_logger
from accountlink.security.replay import ReplayGuard
from accountlink.security.sealed_state import StateSealer

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL = 900  # 15 minutes


def _subject(tenant_id: str | None, user_id: str | None) -> str | None:
    if tenant_id and user_id:
        return f"{tenant_id}/{user_id}"
    return None


def _short(value: str) -> str:
    return f"{value[:8]}..."


class AccountLinkingFlow:
    """Links a provider account to a (tenant, user) and serves its access token."""

    def __init__(
        self,
        sealer: StateSealer,
        provider: ProviderClient,
        token_store: TokenStore,
        replay_guard: ReplayGuard,
        *,
        consent_page_uri: str,
        auth_end_redirect: str,
        state_ttl: float = DEFAULT_STATE_TTL,
        clock: Callable[[], float] = time.time,
        audit: AuditLogger | None = None,
    ):
        self.sealer = sealer
        self.provider = provider
        self.token_store = token_store
        self.replay_guard = replay_guard
        self.consent_page_uri = consent_page_uri
        self.auth_end_redirect = auth_end_redirect
        self.state_ttl = state_ttl
        self._clock = clock
        self._audit = audit

    @property
    def audit(self) -> AuditLogger:
        return self._audit or get_audit_logger()

    # -- consent -----------------------------------------------------------

    def create_consent_uri(
        self,
        code_challenge: str,
        *,
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> str:
        """Mint a sealed state for *code_challenge* and return the provider authorize URL.

        When the caller's identity is given the state is bound to it, and only
        the same (tenant, user) can later claim the token.
        """
        if not code_challenge:
            raise ValidationError("code_challenge is required")

        sealed = self.sealer.seal(
            FlowPayload().to_dict(),
            self.state_ttl,
            code_challenge=code_challenge,
            subject=_subject(tenant_id, user_id),
        )
        return self.provider.get_auth_url(sealed)

    def start(self, sealed_state: str, client_state: str) -> str:
        """Record the front-end's own *client_state* and return the provider authorize URL."""
        if not sealed_state:
            raise ValidationError("token_state is required")
        if not client_state:
            raise ValidationError("state is required")

        payload = FlowPayload.from_dict(self.sealer.unseal(sealed_state).payload)
        payload.client_state = client_state
        return self.provider.get_auth_url(self.sealer.mutate(sealed_state, payload.to_dict()))

    # -- callback ----------------------------------------------------------

    def handle_callback(self, sealed_state: str, code: str) -> CallbackResult:
        """Seal the provider's authorization *code* into the state.

        The resealed token keeps the original id and expiry and becomes the
        caller's claim code.
        """
        if not sealed_state:
            raise ValidationError("state is required")
        if not code:
            raise ValidationError("code is required")

        payload = FlowPayload.from_dict(self.sealer.unseal(sealed_state).payload)
        if payload.oauth_code:
            logger.info("Callback repeated for an in-flight state, replacing code")
        payload.oauth_code = code
        claim_code = self.sealer.mutate(sealed_state, payload.to_dict())
        return CallbackResult(claim_code=claim_code, client_state=payload.client_state)

    def callback_redirect(self, result: CallbackResult) -> str:
        """URL the callback redirects to: ``state=<client_state>&code=<claim_code>``."""
        params = {}
        if result.client_state:
            params["state"] = result.client_state
        params["code"] = result.claim_code
        return with_query(self.auth_end_redirect, params)

    def callback_error_redirect(self, sealed_state: str, error: str) -> str:
        """URL to forward a provider-side error (e.g. access_denied) to the front-end."""
        payload = FlowPayload.from_dict(self.sealer.unseal(sealed_state).payload)
        params = {"error": error}
        if payload.client_state:
            params["state"] = payload.client_state
        return with_query(self.auth_end_redirect, params)

    # -- claim -------------------------------------------------------------

    async def claim_token(
        self,
        sealed_state: str,
        code_verifier: str,
        tenant_id: str,
        user_id: str,
    ) -> OAuthToken:
        """Exchange the sealed authorization code for tokens and store them.

        Checks run in order and any failure aborts with nothing written:
        unseal, code present, owner matches, PKCE, single use. Only then is
        the code sent to the provider, once.
        """
        if not sealed_state or not code_verifier:
            raise ValidationError("code and code_verifier are required")
        if not tenant_id or not user_id:
            raise ValidationError("tenant_id and user_id are required")

        actor = f"{tenant_id}/{user_id}"
        contents = self.sealer.unseal(sealed_state)
        payload = FlowPayload.from_dict(contents.payload)

        if not payload.oauth_code:
            raise InvalidFlowState("No authorization code yet, the callback has not completed")

        if contents.subject is not None and contents.subject != actor:
            logger.warning("State %s claimed by a different user", _short(contents.id))
            self.audit.log_security_event(
                "claim_token", actor, _short(contents.id), "block",
                severity=AuditSeverity.ALERT, reason="subject_mismatch",
            )
            raise InvalidFlowState("State was issued to a different user")

        if not pkce.verify(contents.code_challenge, code_verifier):
            logger.warning("PKCE verification failed for state %s", _short(contents.id))
            self.audit.log_security_event(
                "claim_token", actor, _short(contents.id), "block",
                severity=AuditSeverity.ALERT, reason="challenge_mismatch",
            )
            raise ChallengeMismatch("code_verifier does not match code_challenge")

        if not await self.replay_guard.claim_id(contents.id, contents.expires_at):
            logger.warning("Replay of state %s blocked", _short(contents.id))
            self.audit.log_security_event(
                "claim_token", actor, _short(contents.id), "block",
                severity=AuditSeverity.ALERT, reason="replay",
            )
            raise Replayed("State has already been claimed")

        try:
            result = await self.provider.exchange_code(payload.oauth_code)
        except ProviderError:
            logger.error("Code exchange failed for %s", actor)
            self.audit.log_security_event(
                "claim_token", actor, _short(contents.id), "error",
                severity=AuditSeverity.WARNING, reason="provider_error",
            )
            raise

        if not result.refresh_token:
            raise ProviderError("Provider did not issue a refresh token")

        token = OAuthToken(
            access_token=result.access_token,
            access_token_expires_at=self._clock() + result.expires_in,
            refresh_token=result.refresh_token,
        )
        self.token_store.set(tenant_id, user_id, token)
        self.audit.log_security_event("claim_token", actor, _short(contents.id), "success")
        logger.info("Linked account for %s", actor)
        return token

    # -- cached access -----------------------------------------------------

    async def get_access_token(self, tenant_id: str, user_id: str) -> AccessTokenResult:
        """Return a valid access token, refreshing it if expired.

        A refresh failure means the user must consent again; it is never
        raised. Store failures are.
        """
        token = self.token_store.get(tenant_id, user_id)
        if token is None:
            logger.debug("No token stored for %s/%s", tenant_id, user_id)
            return AccessTokenResult.needs_consent(self.consent_page_uri)

        if not token.is_expired(self._clock()):
            return AccessTokenResult.granted(token.access_token, token.access_token_expires_at)

        logger.info("Access token expired for %s/%s, refreshing", tenant_id, user_id)
        try:
            result = await self.provider.refresh(token.refresh_token)
        except ProviderError as e:
            logger.warning("Token refresh failed for %s/%s: %s", tenant_id, user_id, e)
            self.audit.log_security_event(
                "refresh_token", f"{tenant_id}/{user_id}", "provider", "error",
                severity=AuditSeverity.WARNING, reason=e.code,
            )
            return AccessTokenResult.needs_consent(self.consent_page_uri)

        refreshed = OAuthToken(
            access_token=result.access_token,
            access_token_expires_at=self._clock() + result.expires_in,
            refresh_token=result.refresh_token or token.refresh_token,
        )
        self.token_store.set(tenant_id, user_id, refreshed)
        return AccessTokenResult.granted(refreshed.access_token, refreshed.access_token_expires_at)

    def logout(self, tenant_id: str, user_id: str) -> None:
        """Forget the linked account. Idempotent."""
        self.token_store.delete(tenant_id, user_id)
        self.audit.log_security_event("logout", f"{tenant_id}/{user_id}", "provider", "success")


def build_account_linking_flow(settings: Settings) -> AccountLinkingFlow:
    """Wire an AccountLinkingFlow from settings."""
    from accountlink.integrations.provider import HttpProviderClient
    from accountlink.integrations.token_store import FileTokenStore, MemoryTokenStore
    from accountlink.security.replay import MemoryReplayGuard, RedisReplayGuard
    from accountlink.security.sealed_state import StateKeyring

    if settings.state_secrets:
        keyring = StateKeyring.from_secrets(settings.state_secrets)
    else:
        logger.warning(
            "ACCOUNTLINK_STATE_SECRETS not set, using a per-process key. "
            "In-flight flows will not survive a restart or span workers."
        )
        keyring = StateKeyring.ephemeral()

    provider = HttpProviderClient.from_preset(
        settings.provider,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.callback_uri,
        scopes=settings.scopes,
        auth_url=settings.authorize_url,
        token_url=settings.token_url,
        timeout=settings.provider_timeout_seconds,
    )

    if settings.token_store_backend == "memory":
        token_store: TokenStore = MemoryTokenStore()
    else:
        token_store = FileTokenStore(settings.token_store_dir)

    if settings.replay_backend == "redis":
        replay_guard: ReplayGuard = RedisReplayGuard.from_url(settings.redis_url)
    else:
        replay_guard = MemoryReplayGuard()

    return AccountLinkingFlow(
        StateSealer(keyring),
        provider,
        token_store,
        replay_guard,
        consent_page_uri=settings.resolved_consent_page_uri,
        auth_end_redirect=settings.resolved_auth_end_redirect,
        state_ttl=settings.state_ttl_seconds,
    )


# Singleton
_flow: AccountLinkingFlow | None = None


def get_account_linking_flow() -> AccountLinkingFlow:
    global _flow
    if _flow is None:
        _flow = build_account_linking_flow(get_settings())
    return _flow


def reset_account_linking_flow() -> None:
    global _flow
    _flow = None
