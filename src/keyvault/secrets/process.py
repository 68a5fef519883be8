"""Subprocess invocation for native credential tools.

Tools are always run from an argument list (never through a shell) and the
secret, when there is one, travels on stdin so it never shows up in process
listings.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Protocol, Sequence

from keyvault.errors import BackendUnavailable, InvocationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Captured outcome of a tool invocation."""

    returncode: int
    stdout: str
    stderr: str


class Runner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        stdin: str | None = None,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> ToolResult: ...


def run_tool(
    argv: Sequence[str],
    *,
    stdin: str | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> ToolResult:
    """Run *argv* and return its exit status and decoded output.

    A non-zero exit is returned, not raised: only the caller knows which exit
    codes mean "not found". Launch failures and timeouts raise.

    Parameters
    ----------
    argv:
        Executable followed by its arguments.
    stdin:
        Text fed to the process on standard input.
    timeout:
        Seconds before the process is killed and ``InvocationFailure`` raised.
    env:
        Extra environment variables merged over the current environment.
    """
    program = argv[0]
    merged_env = {**os.environ, **env} if env else None
    try:
        result = subprocess.run(
            list(argv),
            input=stdin.encode("utf-8") if stdin is not None else None,
            capture_output=True,
            timeout=timeout,
            env=merged_env,
            check=False,
        )
    except FileNotFoundError as exc:
        raise BackendUnavailable(f"{program} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise InvocationFailure(f"{program} timed out after {timeout}s") from exc
    except OSError as exc:
        raise InvocationFailure(f"failed to launch {program}: {exc}") from exc

    stdout = result.stdout.decode("utf-8", errors="replace")
    stderr = result.stderr.decode("utf-8", errors="replace")
    logger.debug("%s exited with %d", os.path.basename(program), result.returncode)
    return ToolResult(returncode=result.returncode, stdout=stdout, stderr=stderr)


def failure(program: str, action: str, result: ToolResult) -> InvocationFailure:
    """Build an ``InvocationFailure`` from a non-zero ``ToolResult``."""
    return InvocationFailure(
        f"{program} {action} failed",
        returncode=result.returncode,
        stderr=result.stderr.strip()[:500],
    )
