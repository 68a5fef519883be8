"""macOS Keychain backend.

Wraps the macOS ``security`` CLI to store secrets as generic passwords in the
user's login keychain. Writes go through ``security -i`` so the password is
read from stdin instead of appearing in the process argument list. The
password is sent hex-encoded (``-X``), so any text survives the interactive
command parser.
"""

from __future__ import annotations

import re

from keyvault.errors import InvocationFailure
from keyvault.secrets.process import failure
from keyvault.secrets.store import NativeBackend

# Exit code when an item is not found in Keychain (errSecItemNotFound)
_ERR_ITEM_NOT_FOUND = 44

_HEX_OUTPUT = re.compile(r"(?:[0-9a-fA-F]{2})+")


def _quote(value: str) -> str:
    """Quote a token for the ``security -i`` command line parser."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _decode_password(output: str) -> str:
    """Undo the hex encoding ``find-generic-password -w`` applies to unprintable data.

    ``security`` prints printable-ASCII passwords verbatim and everything
    else as hex, so hex output is decoded only when the result could not
    have been printed verbatim.
    """
    if not _HEX_OUTPUT.fullmatch(output):
        return output
    try:
        decoded = bytes.fromhex(output).decode("utf-8")
    except ValueError:
        return output
    if decoded.isascii() and decoded.isprintable():
        return output
    return decoded


class KeychainBackend(NativeBackend):
    """Stores secrets in macOS Keychain via the ``security`` CLI."""

    tools = ("security",)

    def save(self, account: str, secret: str) -> None:
        if any(ch in value for value in (account, self._service) for ch in "\r\n"):
            raise InvocationFailure("security -i cannot address an item whose name has a line break")
        command = " ".join(
            [
                "add-generic-password",
                "-a", _quote(account),
                "-s", _quote(self._service),
                "-X", _quote(secret.encode("utf-8").hex()),
                "-U",
            ]
        )
        result = self._run("-i", stdin=command + "\n")
        # Interactive mode reports per-command errors on stderr, not the exit status
        if result.returncode != 0 or result.stderr.strip():
            raise failure("security", "add-generic-password", result)

    def get(self, account: str) -> str | None:
        result = self._run(
            "find-generic-password",
            "-a", account,
            "-s", self._service,
            "-w",
        )
        if result.returncode == _ERR_ITEM_NOT_FOUND:
            return None
        if result.returncode != 0:
            raise failure("security", "find-generic-password", result)
        output = result.stdout
        if output.endswith("\n"):
            output = output[:-1]
        return _decode_password(output)

    def delete(self, account: str) -> None:
        result = self._run(
            "delete-generic-password",
            "-a", account,
            "-s", self._service,
        )
        if result.returncode not in (0, _ERR_ITEM_NOT_FOUND):
            raise failure("security", "delete-generic-password", result)
