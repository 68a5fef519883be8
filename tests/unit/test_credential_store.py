"""Tests for the credential store facade and its fallback policy."""

from __future__ import annotations

import base64
import json
import logging
import pathlib
import stat
import sys
from unittest.mock import patch

import pytest

from keyvault import CredentialStore
from keyvault.config import Settings, StoreConfig, StoreSettings
from keyvault.errors import InvocationFailure, PersistenceFailure
from keyvault.secrets.encrypted_file import AuthenticatedCacheStore
from keyvault.secrets.keychain import KeychainBackend
from keyvault.secrets.process import ToolResult
from keyvault.secrets.store import NativeBackend
from tests.conftest import ScriptedRunner

_LOGGER = "keyvault.credential_store"


def _fallback_warnings(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == _LOGGER and r.levelno == logging.WARNING]


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_defaults_to_home_cache(self) -> None:
        store = CredentialStore("my-app", fallback=True)
        assert store.cache_dir == pathlib.Path.home() / ".cache" / "my-app"
        assert store.is_fallback_forced is True

    def test_config_must_match_service(self, config: StoreConfig) -> None:
        with pytest.raises(ValueError):
            CredentialStore("other", config=config)

    def test_from_settings(self, tmp_path: pathlib.Path) -> None:
        settings = Settings(store=StoreSettings(cache_root=str(tmp_path), native_timeout=5))
        store = CredentialStore.from_settings("svc", settings, fallback=True)
        assert store.config.cache_dir == tmp_path / "svc"
        assert store.config.native_timeout == 5
        assert store.is_fallback_forced

    def test_native_backend_chosen_once(self, config: StoreConfig) -> None:
        store = CredentialStore("test-svc", config=config)
        assert isinstance(store._native, NativeBackend)


# ---------------------------------------------------------------------------
# Forced fallback
# ---------------------------------------------------------------------------

class TestForcedFallback:
    @pytest.fixture
    def store(self, fallback_config: StoreConfig, working_native) -> CredentialStore:
        return CredentialStore("test-svc", config=fallback_config, native=working_native)

    def test_save_get_delete_scenario(self, store: CredentialStore, working_native) -> None:
        store.save("a@b.com", "p@ss!")
        cache_file = store.config.cache_file
        assert cache_file.exists()
        if sys.platform != "win32":
            assert stat.S_IMODE(cache_file.stat().st_mode) == 0o600
        assert store.get("a@b.com") == "p@ss!"
        store.delete("a@b.com")
        assert store.get("a@b.com") is None
        assert working_native.calls == []

    @pytest.mark.parametrize("secret", ["", "p@$$w0rd!#%^&*(){}[]|\\:;\"<>?,./`~", "密码🔐パスワード"])
    def test_roundtrip_edge_secrets(self, store: CredentialStore, secret: str) -> None:
        store.save("acct", secret)
        assert store.get("acct") == secret

    def test_overwrite_keeps_latest(self, store: CredentialStore) -> None:
        store.save("acct", "old-password")
        store.save("acct", "new-password")
        assert store.get("acct") == "new-password"

    def test_plaintext_never_on_disk(self, store: CredentialStore) -> None:
        store.save("acct", "super-secret-password")
        assert "super-secret-password" not in store.config.cache_file.read_text(encoding="utf-8")

    def test_tampered_blob_reads_as_none(self, store: CredentialStore) -> None:
        store.save("acct", "secret")
        cache_file = store.config.cache_file
        mapping = json.loads(cache_file.read_text(encoding="utf-8"))
        raw = bytearray(base64.b64decode(mapping["acct"]))
        raw[-1] ^= 0xFF
        mapping["acct"] = base64.b64encode(bytes(raw)).decode()
        cache_file.write_text(json.dumps(mapping), encoding="utf-8")
        assert store.get("acct") is None

    def test_save_failure_propagates(self, tmp_path: pathlib.Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = CredentialStore("svc", fallback=True, config=StoreConfig(
            service="svc", cache_root=blocker, force_fallback=True,
        ))
        with pytest.raises(PersistenceFailure):
            store.save("acct", "pw")
        with pytest.raises(PersistenceFailure):
            store.delete("acct")

    def test_get_failure_reads_as_none(self, store: CredentialStore) -> None:
        store.save("acct", "pw")
        store.config.cache_file.write_text("not json", encoding="utf-8")
        assert store.get("acct") is None


# ---------------------------------------------------------------------------
# Native path
# ---------------------------------------------------------------------------

class TestNativePath:
    @pytest.fixture
    def store(self, config: StoreConfig, working_native) -> CredentialStore:
        return CredentialStore("test-svc", config=config, native=working_native)

    def test_native_success_never_touches_cache(
        self, store: CredentialStore, working_native, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            store.save("acct", "pw")
            assert store.get("acct") == "pw"
            store.delete("acct")
            assert store.get("acct") is None
        assert working_native.calls == [
            ("save", "acct"), ("get", "acct"), ("delete", "acct"), ("get", "acct"),
        ]
        assert not store.config.cache_dir.exists()
        assert _fallback_warnings(caplog) == []

    def test_native_miss_reads_entry_left_by_earlier_fallback(
        self, store: CredentialStore, config: StoreConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        AuthenticatedCacheStore(config).put("acct", "cached")
        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            assert store.get("acct") == "cached"
        assert _fallback_warnings(caplog) == []

    def test_native_value_wins_over_cache(
        self, store: CredentialStore, config: StoreConfig, working_native
    ) -> None:
        AuthenticatedCacheStore(config).put("acct", "cached")
        working_native.entries["acct"] = "native"
        assert store.get("acct") == "native"

    def test_native_delete_purges_cached_copy(
        self, store: CredentialStore, config: StoreConfig, working_native
    ) -> None:
        cache = AuthenticatedCacheStore(config)
        cache.put("acct", "cached")
        cache.put("other", "keep")
        working_native.entries["acct"] = "native"
        store.delete("acct")
        assert store.get("acct") is None
        assert cache.list_accounts() == ["other"]


# ---------------------------------------------------------------------------
# Facade over the macOS Keychain backend
# ---------------------------------------------------------------------------

class TestKeychainFacade:
    @pytest.fixture(autouse=True)
    def _security_on_path(self):
        with patch("keyvault.secrets.store.shutil.which", return_value="/usr/bin/security"):
            yield

    def _store(self, config: StoreConfig, runner: ScriptedRunner) -> CredentialStore:
        return CredentialStore("test-svc", config=config, native=KeychainBackend(config, runner=runner))

    def test_multiline_secret_stays_in_keychain(
        self, config: StoreConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        secret = "line one\nline two"
        hexed = secret.encode("utf-8").hex()
        runner = ScriptedRunner(ToolResult(0, "", ""), ToolResult(0, hexed + "\n", ""))
        store = self._store(config, runner)
        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            store.save("acct", secret)
            assert store.get("acct") == secret
        assert _fallback_warnings(caplog) == []
        assert f'-X "{hexed}"' in runner.calls[0]["stdin"]
        assert secret not in runner.calls[0]["stdin"]
        assert not config.cache_dir.exists()

    def test_failed_keychain_save_is_found_after_native_miss(self, config: StoreConfig) -> None:
        runner = ScriptedRunner(
            ToolResult(0, "", "SecKeychainItemCreateFromContent: User interaction is not allowed.\n"),
            ToolResult(44, "", "The specified item could not be found in the keychain.\n"),
        )
        store = self._store(config, runner)
        store.save("acct", "pw")
        assert store.get("acct") == "pw"
        assert [call["argv"][1] for call in runner.calls] == ["-i", "find-generic-password"]


# ---------------------------------------------------------------------------
# Degrade on native failure
# ---------------------------------------------------------------------------

class TestDegradeOnFailure:
    @pytest.fixture
    def store(self, config: StoreConfig, failing_native) -> CredentialStore:
        return CredentialStore("test-svc", config=config, native=failing_native)

    def test_save_falls_back_with_one_warning_then_get_falls_back(
        self, store: CredentialStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            store.save("a@b.com", "p@ss!")
        warnings = _fallback_warnings(caplog)
        assert len(warnings) == 1
        assert "fake-tool not found" in warnings[0].getMessage()
        assert "p@ss!" not in warnings[0].getMessage()

        caplog.clear()
        with caplog.at_level(logging.WARNING, logger=_LOGGER):
            assert store.get("a@b.com") == "p@ss!"
        assert len(_fallback_warnings(caplog)) == 1

    def test_delete_falls_back(self, store: CredentialStore) -> None:
        store.save("acct", "pw")
        store.delete("acct")
        assert store.get("acct") is None
        assert AuthenticatedCacheStore(store.config).get("acct") is None

    def test_invocation_failure_also_falls_back(self, store: CredentialStore, failing_native) -> None:
        failing_native.error = InvocationFailure("secret-tool store failed", returncode=1)
        store.save("acct", "pw")
        assert store.get("acct") == "pw"

    def test_unexpected_native_exception_falls_back(
        self, store: CredentialStore, failing_native
    ) -> None:
        failing_native.error = KeyError("acct")  # type: ignore[assignment]
        store.save("acct", "pw")
        assert AuthenticatedCacheStore(store.config).get("acct") == "pw"

    def test_no_memory_between_calls(self, store: CredentialStore, failing_native) -> None:
        store.save("acct", "from-fallback")
        failing_native.error = None
        failing_native.entries["acct"] = "from-native"
        assert store.get("acct") == "from-native"
        assert failing_native.calls == [("save", "acct"), ("get", "acct")]

    def test_write_fails_when_both_paths_fail(self, tmp_path: pathlib.Path, failing_native) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config = StoreConfig(service="test-svc", cache_root=blocker)
        store = CredentialStore("test-svc", config=config, native=failing_native)
        with pytest.raises(PersistenceFailure):
            store.save("acct", "pw")
        with pytest.raises(PersistenceFailure):
            store.delete("acct")

    def test_read_degrades_to_none_when_both_paths_fail(
        self, tmp_path: pathlib.Path, failing_native
    ) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config = StoreConfig(service="test-svc", cache_root=blocker)
        store = CredentialStore("test-svc", config=config, native=failing_native)
        assert store.get("acct") is None
