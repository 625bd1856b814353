# Provider Client - identity-provider authorize URL, code exchange and refresh.
# Created: 2026-10-19

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from accountlink.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600

# OAuth 2.0 provider presets
PROVIDERS: dict[str, dict[str, str]] = {
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
    },
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
    },
}

# Extra authorize parameters some providers need to hand out refresh tokens
_EXTRA_AUTH_PARAMS: dict[str, dict[str, str]] = {
    "google": {"access_type": "offline", "prompt": "consent"},
}


def with_query(url: str, params: dict[str, str]) -> str:
    """Append *params* to *url*, keeping any query string it already has."""
    parts = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


@dataclass
class ProviderTokenResponse:
    """Token endpoint response, normalised."""

    access_token: str
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: str | None = None


class ProviderClient(Protocol):
    def get_auth_url(self, state: str) -> str: ...

    async def exchange_code(self, code: str) -> ProviderTokenResponse: ...

    async def refresh(self, refresh_token: str) -> ProviderTokenResponse: ...


@dataclass
class HttpProviderClient:
    """OAuth 2.0 authorization-code client for one configured provider.

    Every call carries a bounded timeout and surfaces failure as
    ProviderError. Nothing is retried: authorization codes are single-use.
    """

    client_id: str
    client_secret: str
    redirect_uri: str
    auth_url: str
    token_url: str
    scopes: list[str] = field(default_factory=list)
    extra_auth_params: dict[str, str] = field(default_factory=dict)
    timeout: float = 15.0
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_preset(
        cls,
        provider: str,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        auth_url: str | None = None,
        token_url: str | None = None,
        timeout: float = 15.0,
    ) -> HttpProviderClient:
        config = PROVIDERS.get(provider)
        if config is None and not (auth_url and token_url):
            raise ValueError(f"Unknown OAuth provider: {provider}")
        config = config or {}
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            auth_url=auth_url or config["auth_url"],
            token_url=token_url or config["token_url"],
            scopes=list(scopes or []),
            extra_auth_params=dict(_EXTRA_AUTH_PARAMS.get(provider, {})),
            timeout=timeout,
        )

    def get_auth_url(self, state: str) -> str:
        """Generate the provider authorization URL carrying *state*."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
            **self.extra_auth_params,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        return with_query(self.auth_url, params)

    async def exchange_code(self, code: str) -> ProviderTokenResponse:
        """Exchange an authorization code for access + refresh tokens."""
        data = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )
        return self._parse(data)

    async def refresh(self, refresh_token: str) -> ProviderTokenResponse:
        """Use a refresh token to get a new access token."""
        data = await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        return self._parse(data)

    async def _post_token(self, form: dict[str, str]) -> dict:
        form = {**form, "client_id": self.client_id, "client_secret": self.client_secret}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    self.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Token endpoint returned %s for %s", e.response.status_code, form["grant_type"]
            )
            raise ProviderError(f"Token endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("Token endpoint unreachable: %s", e)
            raise ProviderError(f"Token endpoint unreachable: {e}") from e
        except ValueError as e:
            raise ProviderError("Token endpoint returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProviderError("Token endpoint returned an unexpected body")
        # GitHub reports failures as HTTP 200 with an "error" field.
        if "error" in data:
            logger.warning(
                "Token endpoint error for %s: %s", form["grant_type"], data.get("error")
            )
            raise ProviderError(
                data.get("error_description") or str(data["error"]), code=str(data["error"])
            )
        return data

    @staticmethod
    def _parse(data: dict) -> ProviderTokenResponse:
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError("Token endpoint response has no access_token")
        try:
            raw = data.get("expires_in")
            expires_in = DEFAULT_EXPIRES_IN if raw is None else int(raw)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return ProviderTokenResponse(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=data.get("refresh_token") or None,
        )
