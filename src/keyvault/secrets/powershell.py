"""Windows backend using PowerShell SecureString protection.

Each credential is a DPAPI-protected blob (``ConvertFrom-SecureString``,
bound to the current Windows user profile) stored in
``%APPDATA%\\keyvault\\<service>-<account>.txt``. The secret is passed to
PowerShell on stdin and the target path through an environment variable,
so neither is interpolated into the script.
"""

from __future__ import annotations

import base64
import os
import pathlib
from urllib.parse import quote

from keyvault.errors import InvocationFailure
from keyvault.secrets.process import ToolResult, failure
from keyvault.secrets.store import NativeBackend

_PATH_VAR = "KV_TARGET_PATH"

_SAVE_SCRIPT = """
$ErrorActionPreference = 'Stop'
[Console]::InputEncoding = New-Object System.Text.UTF8Encoding $false
$plain = [Console]::In.ReadToEnd()
if ($plain.Length -eq 0) {
    $secure = New-Object System.Security.SecureString
} else {
    $secure = ConvertTo-SecureString -String $plain -AsPlainText -Force
}
$secure | ConvertFrom-SecureString | Set-Content -LiteralPath $env:KV_TARGET_PATH -Encoding ASCII
"""

_GET_SCRIPT = """
$ErrorActionPreference = 'Stop'
[Console]::OutputEncoding = New-Object System.Text.UTF8Encoding $false
$encrypted = (Get-Content -LiteralPath $env:KV_TARGET_PATH -Raw).Trim()
$secure = ConvertTo-SecureString -String $encrypted
$bstr = [System.Runtime.InteropServices.Marshal]::SecureStringToBSTR($secure)
try {
    [Console]::Out.Write([System.Runtime.InteropServices.Marshal]::PtrToStringBSTR($bstr))
} finally {
    [System.Runtime.InteropServices.Marshal]::ZeroFreeBSTR($bstr)
}
"""


def _encode(script: str) -> str:
    """Encode a script for ``-EncodedCommand`` (base64 of UTF-16LE)."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


class PowerShellBackend(NativeBackend):
    """Stores DPAPI-protected secrets via PowerShell (``pwsh`` or ``powershell``)."""

    tools = ("pwsh", "powershell")

    def vault_dir(self) -> pathlib.Path:
        appdata = os.environ.get("APPDATA")
        base = pathlib.Path(appdata) if appdata else pathlib.Path.home()
        return base / "keyvault"

    def credential_path(self, account: str) -> pathlib.Path:
        name = f"{self._service}-{quote(account, safe='@._-')}.txt"
        return self.vault_dir() / name

    def _powershell(self, script: str, path: pathlib.Path, stdin: str | None = None) -> ToolResult:
        return self._run(
            "-NoProfile",
            "-NonInteractive",
            "-EncodedCommand",
            _encode(script),
            stdin=stdin,
            env={_PATH_VAR: str(path)},
        )

    def save(self, account: str, secret: str) -> None:
        path = self.credential_path(account)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InvocationFailure(f"cannot create {path.parent}: {exc}") from exc
        result = self._powershell(_SAVE_SCRIPT, path, stdin=secret)
        if result.returncode != 0:
            raise failure("powershell", "ConvertFrom-SecureString", result)

    def get(self, account: str) -> str | None:
        path = self.credential_path(account)
        if not path.exists():
            return None
        result = self._powershell(_GET_SCRIPT, path)
        if result.returncode != 0:
            raise failure("powershell", "ConvertTo-SecureString", result)
        return result.stdout

    def delete(self, account: str) -> None:
        path = self.credential_path(account)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise InvocationFailure(f"cannot remove {path}: {exc}") from exc
