"""Host commands issued during activation.

getent, groupadd, useradd, usermod and systemctl all run through run_command():
the argument vector goes to asyncio.create_subprocess_exec unchanged (never a
shell), and an exit status the caller did not list in `ok_codes` becomes an
ActivationError carrying the command's stderr. Callers that need to tell
"not found" from "failed" (getent exits 2 for an unknown key) pass the extra
code and inspect CommandResult.returncode themselves.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# User lookups are instant; `systemctl restart` waits for the migration oneshot.
DEFAULT_TIMEOUT_SECONDS = 120


class ActivationError(Exception):
    """Raised when a host command needed for activation fails or times out."""


@dataclass(frozen=True)
class CommandResult:
    """Exit status and decoded, stripped output of a host command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)


def check_exit(result: CommandResult, ok_codes: tuple[int, ...] = (0,)) -> CommandResult:
    """Return `result` if its exit status is expected, else raise ActivationError."""
    if result.returncode in ok_codes:
        return result
    logger.error(
        "host command failed: args=%r returncode=%d stderr=%r",
        result.args,
        result.returncode,
        result.stderr,
    )
    msg = f"{result.command} failed (exit {result.returncode}): {result.stderr}"
    raise ActivationError(msg)


async def run_command(
    *args: str,
    ok_codes: tuple[int, ...] = (0,),
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> CommandResult:
    """Run a host command and check its exit status.

    Args:
        *args: Command and arguments, e.g. ("getent", "group", "healthchecks").
        ok_codes: Exit statuses that count as an answer rather than a failure.
        timeout_seconds: Maximum runtime before the process is killed.

    Returns:
        CommandResult whose returncode is one of ok_codes.

    Raises:
        ActivationError: Unexpected exit status, or the timeout expired.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        proc.kill()
        await proc.wait()
        msg = f"{' '.join(args)} timed out after {timeout_seconds}s"
        raise ActivationError(msg) from None

    result = CommandResult(
        args=args,
        returncode=proc.returncode or 0,
        stdout=(stdout_bytes or b"").decode(errors="replace").strip(),
        stderr=(stderr_bytes or b"").decode(errors="replace").strip(),
    )
    return check_exit(result, ok_codes)
