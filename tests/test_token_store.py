# Tests for integrations/token_store.py
# Created: 2026-10-19

import stat
import threading

import pytest

from accountlink.errors import StoreError
from accountlink.integrations.token_store import FileTokenStore, MemoryTokenStore, OAuthToken


def _token(access="access123", refresh="refresh456", expires_at=1_800_003_600.0):
    return OAuthToken(
        access_token=access, access_token_expires_at=expires_at, refresh_token=refresh
    )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryTokenStore()
    return FileTokenStore(tmp_path / "tokens")


class TestTokenStore:
    def test_save_and_load(self, store):
        store.set("tenant", "user", _token())

        loaded = store.get("tenant", "user")
        assert loaded is not None
        assert loaded.access_token == "access123"
        assert loaded.refresh_token == "refresh456"
        assert loaded.access_token_expires_at == 1_800_003_600.0

    def test_load_nonexistent(self, store):
        assert store.get("tenant", "nope") is None

    def test_keyed_by_tenant_and_user(self, store):
        store.set("t1", "u", _token(access="a1"))
        store.set("t2", "u", _token(access="a2"))
        store.set("t1", "u2", _token(access="a3"))
        assert store.get("t1", "u").access_token == "a1"
        assert store.get("t2", "u").access_token == "a2"
        assert store.get("t1", "u2").access_token == "a3"

    def test_overwrite(self, store):
        store.set("t", "u", _token(access="old"))
        store.set("t", "u", _token(access="new"))
        assert store.get("t", "u").access_token == "new"

    def test_delete(self, store):
        store.set("t", "u", _token())
        store.delete("t", "u")
        assert store.get("t", "u") is None

    def test_delete_nonexistent_is_noop(self, store):
        store.delete("t", "nope")
        assert store.get("t", "nope") is None


class TestMemoryTokenStore:
    def test_returns_copies(self):
        store = MemoryTokenStore()
        store.set("t", "u", _token())
        loaded = store.get("t", "u")
        loaded.access_token = "mutated"
        assert store.get("t", "u").access_token == "access123"


class TestFileTokenStore:
    def test_file_permissions(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.set("t", "u", _token())
        files = list(tmp_path.glob("*.json"))
        assert len(files) == 1
        mode = files[0].stat().st_mode
        # Owner read+write only
        assert mode & stat.S_IRUSR
        assert mode & stat.S_IWUSR
        assert not (mode & stat.S_IRGRP)
        assert not (mode & stat.S_IROTH)

    def test_ids_never_reach_filesystem(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.set("../../etc", "passwd", _token())
        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert "etc" not in files[0].name
        assert store.get("../../etc", "passwd") is not None

    def test_no_temp_files_left(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.set("t", "u", _token())
        assert not list(tmp_path.glob("*.tmp"))

    def test_concurrent_writes_for_same_user(self, tmp_path):
        store = FileTokenStore(tmp_path)
        errors = []

        def writer(n):
            for i in range(100):
                try:
                    store.set("t", "u", _token(access=f"a{n}-{i}"))
                except StoreError as e:
                    errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.get("t", "u").access_token.startswith("a")
        assert len(list(tmp_path.glob("*.json"))) == 1
        assert not list(tmp_path.glob("*.tmp"))

    def test_failed_rename_removes_temp_file(self, tmp_path, monkeypatch):
        import accountlink.integrations.token_store as token_store_mod

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(token_store_mod.os, "replace", broken_replace)
        store = FileTokenStore(tmp_path)
        with pytest.raises(StoreError):
            store.set("t", "u", _token())
        assert not list(tmp_path.iterdir())

    def test_corrupt_file_reads_as_absent(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.set("t", "u", _token())
        next(tmp_path.glob("*.json")).write_text("{not json")
        assert store.get("t", "u") is None

    def test_schema_drift_reads_as_absent(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.set("t", "u", _token())
        next(tmp_path.glob("*.json")).write_text('{"token": "old-format"}')
        assert store.get("t", "u") is None

    def test_default_directory_under_config_dir(self, tmp_path):
        # HOME is redirected to tmp_path by the autouse fixture
        store = FileTokenStore()
        store.set("t", "u", _token())
        assert list((tmp_path / ".accountlink" / "tokens").glob("*.json"))

    def test_write_failure_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = FileTokenStore(blocker / "tokens")
        with pytest.raises(StoreError):
            store.set("t", "u", _token())


class TestOAuthToken:
    def test_expired_at_boundary(self):
        token = _token(expires_at=100.0)
        assert token.is_expired(99.999) is False
        assert token.is_expired(100.0) is True
        assert token.is_expired(101.0) is True
