# Token Store - per-(tenant, user) OAuth token persistence.
# Created: 2026-10-19
#
# FileTokenStore keeps one JSON file per linked account under
# ~/.accountlink/tokens/. MemoryTokenStore is for tests and single-process dev.

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Protocol

from accountlink.config import get_config_dir
from accountlink.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class OAuthToken:
    """Linked-account token material."""

    access_token: str
    access_token_expires_at: float  # Unix timestamp
    refresh_token: str

    def is_expired(self, now: float) -> bool:
        return now >= self.access_token_expires_at


class TokenStore(Protocol):
    def get(self, tenant_id: str, user_id: str) -> OAuthToken | None: ...

    def set(self, tenant_id: str, user_id: str, token: OAuthToken) -> None: ...

    def delete(self, tenant_id: str, user_id: str) -> None: ...


class MemoryTokenStore:
    """In-memory token store keyed by (tenant_id, user_id)."""

    def __init__(self):
        self._tokens: dict[tuple[str, str], OAuthToken] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str, user_id: str) -> OAuthToken | None:
        with self._lock:
            token = self._tokens.get((tenant_id, user_id))
        # Copy so callers can't mutate the stored record in place
        return OAuthToken(**asdict(token)) if token else None

    def set(self, tenant_id: str, user_id: str, token: OAuthToken) -> None:
        with self._lock:
            self._tokens[(tenant_id, user_id)] = OAuthToken(**asdict(token))

    def delete(self, tenant_id: str, user_id: str) -> None:
        with self._lock:
            self._tokens.pop((tenant_id, user_id), None)


def _get_tokens_dir() -> Path:
    """Get/create the default token directory."""
    d = get_config_dir() / "tokens"
    d.mkdir(exist_ok=True)
    return d


class FileTokenStore:
    """File-based token store at ~/.accountlink/tokens/{key}.json.

    The file name is a hash of the tenant and user ids, so arbitrary id
    strings never reach the filesystem. Files are chmod 0600 (owner-only
    read/write).
    """

    def __init__(self, directory: Path | None = None):
        self._directory = directory

    def _dir(self) -> Path:
        if self._directory is not None:
            self._directory.mkdir(parents=True, exist_ok=True)
            return self._directory
        return _get_tokens_dir()

    def _path(self, tenant_id: str, user_id: str) -> Path:
        key = hashlib.sha256(f"{tenant_id}\x00{user_id}".encode()).hexdigest()
        return self._dir() / f"{key}.json"

    def get(self, tenant_id: str, user_id: str) -> OAuthToken | None:
        """Load the token for a user. Returns None if absent or unreadable as a token."""
        try:
            path = self._path(tenant_id, user_id)
            if not path.exists():
                return None
            raw = path.read_text()
        except OSError as e:
            raise StoreError(f"Failed to read token: {e}") from e

        try:
            return OAuthToken(**json.loads(raw))
        except (ValueError, TypeError) as e:
            # Schema drift or a half-written file: treat as "not linked".
            logger.warning("Stored token for %s/%s is not a valid token: %s", tenant_id, user_id, e)
            return None

    def set(self, tenant_id: str, user_id: str, token: OAuthToken) -> None:
        """Write the token atomically (temp file + rename).

        Each writer gets its own 0600 temp file, so concurrent writes for the
        same user never collide; the last rename wins.
        """
        tmp = None
        try:
            path = self._path(tenant_id, user_id)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f"{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(asdict(token), f, indent=2)
            os.replace(tmp, path)
            tmp = None
        except OSError as e:
            raise StoreError(f"Failed to write token: {e}") from e
        finally:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
        logger.info("Saved OAuth token for %s/%s", tenant_id, user_id)

    def delete(self, tenant_id: str, user_id: str) -> None:
        try:
            self._path(tenant_id, user_id).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete token: {e}") from e
        logger.info("Deleted OAuth token for %s/%s", tenant_id, user_id)
