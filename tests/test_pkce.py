# Tests for security/pkce.py
# Created: 2026-10-19

import base64
import hashlib
import secrets

import pytest

from accountlink.security import pkce


def test_rfc7636_appendix_b_vector():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert pkce.create_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_challenge_matches_manual_derivation():
    verifier = secrets.token_urlsafe(32)
    expected = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    assert pkce.create_challenge(verifier) == expected


def test_challenge_is_unpadded():
    assert "=" not in pkce.create_challenge("anything")


def test_generate_verifier_length():
    v = pkce.generate_verifier()
    assert 43 <= len(v) <= 128
    assert pkce.generate_verifier() != v


@pytest.mark.parametrize("verifier", ["a", "chal123", "x" * 128, "ünïcödé", " spaced "])
def test_verify_own_challenge(verifier):
    assert pkce.verify(pkce.create_challenge(verifier), verifier) is True


def test_verify_different_verifier():
    for _ in range(20):
        v1, v2 = pkce.generate_verifier(), pkce.generate_verifier()
        assert pkce.verify(pkce.create_challenge(v1), v2) is False


def test_verify_is_case_sensitive():
    verifier = pkce.generate_verifier()
    challenge = pkce.create_challenge(verifier)
    assert pkce.verify(challenge.swapcase(), verifier) is False


def test_verify_rejects_raw_verifier_as_challenge():
    verifier = pkce.generate_verifier()
    assert pkce.verify(verifier, verifier) is False


@pytest.mark.parametrize("challenge, verifier", [("", "v"), ("c", ""), ("", "")])
def test_verify_empty_inputs(challenge, verifier):
    assert pkce.verify(challenge, verifier) is False
