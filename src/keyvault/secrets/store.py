"""Abstract interface for OS-native credential managers."""

from __future__ import annotations

import shutil
from abc import ABC, abstractmethod

from keyvault.config import StoreConfig
from keyvault.errors import BackendUnavailable
from keyvault.secrets.process import Runner, ToolResult, run_tool


class NativeBackend(ABC):
    """Platform credential manager reached through an external tool.

    Implementations raise ``BackendUnavailable`` or ``InvocationFailure`` when
    the tool cannot service a request, and return ``None`` from ``get`` only
    when the tool positively reports that no entry exists.

    Parameters
    ----------
    config:
        Per-service configuration. ``config.service`` namespaces every entry.
    runner:
        Callable used to execute the tool. Defaults to ``run_tool``.
    """

    #: Executable names tried in order; the first one on PATH is used.
    tools: tuple[str, ...] = ()

    def __init__(self, config: StoreConfig, runner: Runner = run_tool) -> None:
        self._config = config
        self._service = config.service
        self._runner = runner

    @property
    def name(self) -> str:
        return type(self).__name__

    def is_available(self) -> bool:
        """Return True if the backing tool is installed."""
        return any(shutil.which(tool) for tool in self.tools)

    def _tool(self) -> str:
        for tool in self.tools:
            path = shutil.which(tool)
            if path:
                return path
        raise BackendUnavailable(
            f"{' or '.join(self.tools) or 'native tool'} not found on PATH"
        )

    def _run(
        self, *args: str, stdin: str | None = None, env: dict[str, str] | None = None
    ) -> ToolResult:
        return self._runner(
            [self._tool(), *args],
            stdin=stdin,
            timeout=self._config.native_timeout,
            env=env,
        )

    @abstractmethod
    def save(self, account: str, secret: str) -> None:
        """Create or overwrite the entry for (service, account)."""

    @abstractmethod
    def get(self, account: str) -> str | None:
        """Return the stored secret, or None if no entry exists."""

    @abstractmethod
    def delete(self, account: str) -> None:
        """Remove the entry. Missing entries are not an error."""


class UnsupportedPlatformBackend(NativeBackend):
    """Backend for platforms without a supported credential manager."""

    def __init__(
        self, config: StoreConfig, platform: str, runner: Runner = run_tool
    ) -> None:
        super().__init__(config, runner)
        self._platform = platform

    def is_available(self) -> bool:
        return False

    def _unavailable(self) -> BackendUnavailable:
        return BackendUnavailable(f"unsupported platform: {self._platform}")

    def save(self, account: str, secret: str) -> None:
        raise self._unavailable()

    def get(self, account: str) -> str | None:
        raise self._unavailable()

    def delete(self, account: str) -> None:
        raise self._unavailable()
