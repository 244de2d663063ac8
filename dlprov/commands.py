from __future__ import annotations

import shutil
import subprocess
from typing import Callable

from .runtime import CommandResult
from .settings import settings

Runner = Callable[..., CommandResult]


def run_command(*args: str, input_bytes: bytes | None = None, timeout: int | None = None) -> CommandResult:
    """Run an external command and return its outcome instead of raising.

    A missing executable or a timeout is reported as a failed result
    (returncode 127 / 124) so callers only ever inspect one shape.
    """
    try:
        proc = subprocess.run(
            list(args),
            input=input_bytes,
            capture_output=True,
            timeout=timeout or settings.command_timeout_s,
        )
    except FileNotFoundError:
        return CommandResult(args=tuple(args), returncode=127, stderr=f"{args[0]}: command not found")
    except subprocess.TimeoutExpired:
        return CommandResult(args=tuple(args), returncode=124, stderr="timed out")

    return CommandResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=proc.stdout.decode("utf-8", errors="replace"),
        stderr=proc.stderr.decode("utf-8", errors="replace"),
    )


def have(executable: str) -> bool:
    return shutil.which(executable) is not None
