"""Sealed state tokens: authenticated, encrypted and time-limited.

A sealed state carries a small JSON document through an untrusted round trip
(browser, identity provider) and comes back either intact or not at all.

Token format (base64url, no padding)::

    version (1 byte) | key_id (4 bytes) | nonce (12 bytes) | AES-256-GCM ciphertext + tag

``version`` and ``key_id`` are bound to the ciphertext as associated data.
The decrypted document holds the nonce id, optional subject, PKCE code
challenge, absolute expiry and the caller's payload.

Keys come from a ``StateKeyring`` built once at startup. Tokens are always
sealed with the newest key; any key still in the ring can unseal, so secrets
can be rotated without breaking flows already in progress.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from accountlink.errors import Expired, InvalidToken

__all__ = ["SealedContents", "StateKeyring", "StateSealer"]

logger = logging.getLogger(__name__)

_VERSION = 1
_KEY_ID_LEN = 4
_NONCE_LEN = 12
_HEADER_LEN = 1 + _KEY_ID_LEN
_HKDF_INFO = b"accountlink/sealed-state/v1"


@dataclass(frozen=True)
class SealedContents:
    """The logical contents of a sealed state token."""

    id: str
    code_challenge: str
    expires_at: float  # Unix timestamp
    payload: Any = None
    subject: str | None = None


def _derive_key(secret: str | bytes) -> bytes:
    raw = secret.encode() if isinstance(secret, str) else secret
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=_HKDF_INFO,
    ).derive(raw)


def _key_id(key: bytes) -> bytes:
    return hashlib.sha256(key).digest()[:_KEY_ID_LEN]


class StateKeyring:
    """Immutable key-id -> key table. The first key is the sealing key."""

    def __init__(self, keys: Sequence[bytes]):
        if not keys:
            raise ValueError("StateKeyring needs at least one key")
        self._ciphers: dict[bytes, AESGCM] = {}
        for key in keys:
            if len(key) != 32:
                raise ValueError("State keys must be 32 bytes")
            # Newest wins if two secrets ever collide on a fingerprint.
            self._ciphers.setdefault(_key_id(key), AESGCM(key))
        self._current = _key_id(keys[0])

    @classmethod
    def from_secrets(cls, secrets: Sequence[str | bytes]) -> StateKeyring:
        """Build a keyring from secrets ordered newest first."""
        return cls([_derive_key(s) for s in secrets])

    @classmethod
    def ephemeral(cls) -> StateKeyring:
        """Random single-key ring. Tokens die with the process."""
        return cls([os.urandom(32)])

    @property
    def current_key_id(self) -> bytes:
        return self._current

    @property
    def key_ids(self) -> list[bytes]:
        return list(self._ciphers)

    def current(self) -> tuple[bytes, AESGCM]:
        return self._current, self._ciphers[self._current]

    def get(self, key_id: bytes) -> AESGCM | None:
        return self._ciphers.get(key_id)


@dataclass
class StateSealer:
    """Seal, unseal and mutate state tokens.

    Stateless apart from the keyring, so one instance can be shared by every
    request handler.
    """

    keyring: StateKeyring
    clock: Callable[[], float] = field(default=time.time)

    def seal(
        self,
        payload: Any,
        ttl: float,
        *,
        code_challenge: str = "",
        subject: str | None = None,
    ) -> str:
        """Seal *payload* with a fresh id, valid for *ttl* seconds."""
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        contents = SealedContents(
            id=str(uuid.uuid4()),
            code_challenge=code_challenge,
            expires_at=self.clock() + ttl,
            payload=payload,
            subject=subject,
        )
        return self._seal_contents(contents)

    def unseal(self, token: str) -> SealedContents:
        """Open *token*.

        Raises:
            InvalidToken: the token is malformed, forged, tampered with or
                sealed under a key no longer in the ring.
            Expired: the token is genuine but past its expiry.
        """
        blob = self._decode(token)
        if len(blob) <= _HEADER_LEN + _NONCE_LEN or blob[0] != _VERSION:
            raise InvalidToken("Unrecognised state format")

        header = blob[:_HEADER_LEN]
        key_id = blob[1:_HEADER_LEN]
        nonce = blob[_HEADER_LEN : _HEADER_LEN + _NONCE_LEN]
        ciphertext = blob[_HEADER_LEN + _NONCE_LEN :]

        cipher = self.keyring.get(key_id)
        if cipher is None:
            raise InvalidToken("State sealed with an unknown key")

        try:
            plaintext = cipher.decrypt(nonce, ciphertext, header)
        except InvalidTag:
            raise InvalidToken("State failed integrity check") from None

        contents = self._parse(plaintext)
        if self.clock() > contents.expires_at:
            raise Expired("State has expired")
        return contents

    def mutate(self, token: str, payload: Any) -> str:
        """Replace the payload of *token*, keeping its id and expiry."""
        contents = self.unseal(token)
        return self._seal_contents(replace(contents, payload=payload))

    # -- internals ---------------------------------------------------------

    def _seal_contents(self, contents: SealedContents) -> str:
        key_id, cipher = self.keyring.current()
        header = bytes([_VERSION]) + key_id
        nonce = os.urandom(_NONCE_LEN)
        document = {
            "id": contents.id,
            "sub": contents.subject,
            "cc": contents.code_challenge,
            "exp": contents.expires_at,
            "p": contents.payload,
        }
        plaintext = json.dumps(document, separators=(",", ":")).encode()
        blob = header + nonce + cipher.encrypt(nonce, plaintext, header)
        return base64.urlsafe_b64encode(blob).rstrip(b"=").decode("ascii")

    @staticmethod
    def _decode(token: str) -> bytes:
        if not token or not isinstance(token, str):
            raise InvalidToken("Empty state")
        try:
            raw = token.encode("ascii")
            blob = base64.urlsafe_b64decode(raw + b"=" * (-len(raw) % 4))
        except (UnicodeEncodeError, binascii.Error, ValueError):
            raise InvalidToken("State is not valid base64url") from None
        # Reject non-canonical encodings (stray characters, unused low bits)
        # so that every distinct string maps to a distinct byte sequence.
        if base64.urlsafe_b64encode(blob).rstrip(b"=") != raw:
            raise InvalidToken("State is not canonical base64url")
        return blob

    @staticmethod
    def _parse(plaintext: bytes) -> SealedContents:
        try:
            document = json.loads(plaintext)
            return SealedContents(
                id=str(document["id"]),
                code_challenge=str(document["cc"]),
                expires_at=float(document["exp"]),
                payload=document.get("p"),
                subject=document.get("sub"),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Sealed state decrypted but its document is malformed")
            raise InvalidToken("State document is malformed") from None
