"""keyvault: cross-platform credential storage with an encrypted file fallback."""

from pathlib import Path as _Path

from keyvault.config import Settings, StoreConfig, load_settings
from keyvault.credential_store import CredentialStore
from keyvault.errors import (
    BackendUnavailable,
    DecryptionError,
    InvocationFailure,
    KeyvaultError,
    NativeBackendError,
    PersistenceFailure,
)


def _read_version() -> str:
    """Read version from the repo-level VERSION file (single source of truth)."""
    for parent in _Path(__file__).resolve().parents:
        candidate = parent / "VERSION"
        if candidate.is_file():
            return candidate.read_text().strip()
    return "0.0.0"


__version__ = _read_version()

__all__ = [
    "BackendUnavailable",
    "CredentialStore",
    "DecryptionError",
    "InvocationFailure",
    "KeyvaultError",
    "NativeBackendError",
    "PersistenceFailure",
    "Settings",
    "StoreConfig",
    "load_settings",
]
