"""
Common utilities shared across agentmgr modules.
"""

from __future__ import annotations

import os
import re
import subprocess
import sys
from dataclasses import dataclass
from typing import Mapping, Sequence

from .errors import ExecutionError

ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;]*m')


@dataclass(frozen=True)
class CommandResult:
    """Captured output of an external command."""
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    args: Sequence[str],
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    merge_stderr: bool = False,
) -> CommandResult:
    """
    Run an external command and capture its output.

    A non-zero exit status is returned, not raised; callers decide whether the
    output is still usable.

    Args:
        args: Program and arguments
        env: Extra environment variables layered over the current environment
        timeout: Seconds before the process is killed (None waits indefinitely)
        merge_stderr: If True, stderr is folded into stdout

    Returns:
        CommandResult with decoded output

    Raises:
        ExecutionError: If the program cannot be started or times out
    """
    args = tuple(args)
    if not args:
        raise ExecutionError("empty command")

    try:
        proc = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
            stdin=subprocess.DEVNULL,  # Isolate stdin
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
            env={**os.environ, "TERM": "dumb", **(env or {})},  # Disable ANSI/color output
        )
    except subprocess.TimeoutExpired as e:
        raise ExecutionError(f"{args[0]} timed out after {timeout}s") from e
    except OSError as e:
        raise ExecutionError(f"failed to run {args[0]}: {e}") from e

    return CommandResult(
        args=args,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub('', text)


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("AGENTMGR_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            try:
                print(f"[agentmgr] {msg}", file=sys.stderr)
            except Exception:
                pass
