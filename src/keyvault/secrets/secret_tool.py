"""Linux Secret Service backend.

Uses ``secret-tool`` from libsecret. Entries carry the attributes
``service`` and ``account`` plus a human-readable label; the secret is piped
on stdin.
"""

from __future__ import annotations

from keyvault.secrets.process import failure
from keyvault.secrets.store import NativeBackend

# secret-tool exits 1 with no output when lookup finds nothing
_EXIT_NO_MATCH = 1


class SecretToolBackend(NativeBackend):
    """Stores secrets in the freedesktop Secret Service via ``secret-tool``."""

    tools = ("secret-tool",)

    def _attributes(self, account: str) -> list[str]:
        return ["service", self._service, "account", account]

    def save(self, account: str, secret: str) -> None:
        result = self._run(
            "store",
            f"--label={self._service}",
            *self._attributes(account),
            stdin=secret,
        )
        if result.returncode != 0:
            raise failure("secret-tool", "store", result)

    def get(self, account: str) -> str | None:
        result = self._run("lookup", *self._attributes(account))
        if result.returncode == _EXIT_NO_MATCH and not result.stdout and not result.stderr.strip():
            return None
        if result.returncode != 0:
            raise failure("secret-tool", "lookup", result)
        return result.stdout

    def delete(self, account: str) -> None:
        result = self._run("clear", *self._attributes(account))
        if result.returncode != 0:
            raise failure("secret-tool", "clear", result)
