# Shared fixtures for accountlink tests.
# Created: 2026-10-19

from __future__ import annotations

from urllib.parse import parse_qs, urlencode, urlparse

import pytest

from accountlink.errors import ProviderError
from accountlink.integrations.provider import ProviderTokenResponse
from accountlink.integrations.token_store import MemoryTokenStore
from accountlink.linking.flow import AccountLinkingFlow
from accountlink.security.audit import AuditLogger
from accountlink.security.replay import MemoryReplayGuard
from accountlink.security.sealed_state import StateKeyring, StateSealer

NOW = 1_800_000_000.0


class FakeClock:
    """Settable clock; call it to read the time."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-memory ProviderClient that records every call."""

    def __init__(self):
        self.exchanged: list[str] = []
        self.refreshed: list[str] = []
        self.exchange_result = ProviderTokenResponse(
            access_token="access-1", expires_in=3600, refresh_token="refresh-1"
        )
        self.refresh_result = ProviderTokenResponse(access_token="access-2", expires_in=1800)
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None

    def get_auth_url(self, state: str) -> str:
        return "https://provider.example/login/oauth/authorize?" + urlencode(
            {"client_id": "cid", "state": state}
        )

    async def exchange_code(self, code: str) -> ProviderTokenResponse:
        self.exchanged.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return self.exchange_result

    async def refresh(self, refresh_token: str) -> ProviderTokenResponse:
        self.refreshed.append(refresh_token)
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_result


def state_from_url(url: str, param: str = "state") -> str:
    return parse_qs(urlparse(url).query)[param][0]


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Keep config dir, audit log and singletons out of the real home directory."""
    import accountlink.linking.flow as flow_mod
    import accountlink.security.audit as audit_mod
    from accountlink.config import get_settings
    from accountlink.security.rate_limiter import auth_limiter, claim_limiter

    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(audit_mod, "_audit_logger", AuditLogger(tmp_path / "audit.jsonl"))
    monkeypatch.setattr(flow_mod, "_flow", None)
    get_settings.cache_clear()
    auth_limiter.reset()
    claim_limiter.reset()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def keyring():
    return StateKeyring.from_secrets(["test-secret-one"])


@pytest.fixture
def sealer(keyring, clock):
    return StateSealer(keyring, clock=clock)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def replay_guard(clock):
    return MemoryReplayGuard(clock=clock)


@pytest.fixture
def audit_log(tmp_path):
    return AuditLogger(tmp_path / "flow-audit.jsonl")


@pytest.fixture
def flow(sealer, provider, token_store, replay_guard, clock, audit_log):
    return AccountLinkingFlow(
        sealer,
        provider,
        token_store,
        replay_guard,
        consent_page_uri="https://app.example/auth-start",
        auth_end_redirect="https://app.example/auth-end",
        state_ttl=900,
        clock=clock,
        audit=audit_log,
    )


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX PX."""

    def __init__(self):
        self.data: dict[str, tuple[str, int]] = {}
        self.calls: list[dict] = []

    async def set(self, key, value, nx=False, px=None):
        self.calls.append({"key": key, "value": value, "nx": nx, "px": px})
        if nx and key in self.data:
            return None
        self.data[key] = (value, px)
        return True
