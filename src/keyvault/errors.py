"""Exception hierarchy for the credential store.

NotFound is never an exception: lookups return ``None``. Everything below is
either recoverable (native failures, which trigger the encrypted-file
fallback) or terminal (persistence failures on the fallback path).
"""

from __future__ import annotations


class KeyvaultError(RuntimeError):
    """Base class for all credential store errors."""


class NativeBackendError(KeyvaultError):
    """The OS credential manager could not service a request."""


class BackendUnavailable(NativeBackendError):
    """The required native tool is missing or the platform is unsupported."""


class InvocationFailure(NativeBackendError):
    """The native tool ran but failed (non-zero exit, launch error, timeout).

    Parameters
    ----------
    message:
        Human-readable description. Never contains the secret.
    returncode:
        Exit status of the tool, or ``None`` if it never exited normally.
    stderr:
        Decoded standard error excerpt reported by the tool.
    """

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.returncode is not None:
            base = f"{base} (exit {self.returncode})"
        if self.stderr:
            base = f"{base}: {self.stderr}"
        return base


class PersistenceFailure(KeyvaultError):
    """The cache directory, key file or mapping file could not be used."""


class DecryptionError(KeyvaultError):
    """A stored blob failed authentication or could not be decoded."""
