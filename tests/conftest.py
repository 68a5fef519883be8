"""Shared test fixtures for keyvault tests."""

from __future__ import annotations

import pathlib
from typing import Sequence

import pytest

from keyvault.config import StoreConfig
from keyvault.errors import BackendUnavailable, NativeBackendError
from keyvault.secrets.process import ToolResult
from keyvault.secrets.store import NativeBackend

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]


class FakeNativeBackend(NativeBackend):
    """In-memory native backend that records calls and can be told to fail."""

    tools = ("fake-tool",)

    def __init__(self, config: StoreConfig, error: NativeBackendError | None = None) -> None:
        super().__init__(config)
        self.entries: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.error = error

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    def save(self, account: str, secret: str) -> None:
        self.calls.append(("save", account))
        self._maybe_fail()
        self.entries[account] = secret

    def get(self, account: str) -> str | None:
        self.calls.append(("get", account))
        self._maybe_fail()
        return self.entries.get(account)

    def delete(self, account: str) -> None:
        self.calls.append(("delete", account))
        self._maybe_fail()
        self.entries.pop(account, None)


class ScriptedRunner:
    """Records invocations and replays queued ``ToolResult`` values."""

    def __init__(self, *results: ToolResult) -> None:
        self.results = list(results) or [ToolResult(0, "", "")]
        self.calls: list[dict] = []

    def __call__(
        self,
        argv: Sequence[str],
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ToolResult:
        self.calls.append({"argv": list(argv), "stdin": stdin, "timeout": timeout, "env": env})
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.fixture
def repo_root() -> pathlib.Path:
    return REPO_ROOT


@pytest.fixture
def config(tmp_path: pathlib.Path) -> StoreConfig:
    return StoreConfig(service="test-svc", cache_root=tmp_path / "cache")


@pytest.fixture
def fallback_config(tmp_path: pathlib.Path) -> StoreConfig:
    return StoreConfig(service="test-svc", cache_root=tmp_path / "cache", force_fallback=True)


@pytest.fixture
def working_native(config: StoreConfig) -> FakeNativeBackend:
    return FakeNativeBackend(config)


@pytest.fixture
def failing_native(config: StoreConfig) -> FakeNativeBackend:
    return FakeNativeBackend(config, error=BackendUnavailable("fake-tool not found on PATH"))
