"""Secret storage backends: OS-native credential managers and the encrypted file cache."""

from __future__ import annotations

import logging
import sys

from keyvault.config import StoreConfig
from keyvault.secrets.process import Runner, run_tool
from keyvault.secrets.store import NativeBackend, UnsupportedPlatformBackend

logger = logging.getLogger(__name__)


def create_native_backend(
    config: StoreConfig,
    platform: str | None = None,
    runner: Runner = run_tool,
) -> NativeBackend:
    """Create the credential-manager backend for the host platform.

    Returns ``KeychainBackend`` on macOS, ``PowerShellBackend`` on Windows,
    ``SecretToolBackend`` on Linux and ``UnsupportedPlatformBackend``
    everywhere else. The choice is made once, here.
    """
    platform = platform or sys.platform
    backend: NativeBackend
    if platform == "darwin":
        from keyvault.secrets.keychain import KeychainBackend

        backend = KeychainBackend(config, runner)
    elif platform == "win32":
        from keyvault.secrets.powershell import PowerShellBackend

        backend = PowerShellBackend(config, runner)
    elif platform.startswith("linux"):
        from keyvault.secrets.secret_tool import SecretToolBackend

        backend = SecretToolBackend(config, runner)
    else:
        backend = UnsupportedPlatformBackend(config, platform, runner)
    logger.debug("Native backend for %s on %s: %s", config.service, platform, backend.name)
    return backend


__all__ = ["NativeBackend", "UnsupportedPlatformBackend", "create_native_backend"]
