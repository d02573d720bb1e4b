"""Subprocess utilities for toolchain invocation.

Wraps the subprocess module so that every external tool (interface compiler,
native compiler, linker) is spawned the same way:

- CREATE_NO_WINDOW on Windows (no console window flashing)
- stdin=DEVNULL (children cannot steal keystrokes from the parent terminal)
- stdout and stderr captured separately and decoded as text
- the process handle and its pipes are released on every exit path
"""

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence


@dataclass(frozen=True)
class ProcessOutput:
    """Captured result of one finished subprocess.

    Attributes:
        args: Command line that was executed
        returncode: Process exit code
        stdout: Everything the process wrote to stdout
        stderr: Everything the process wrote to stderr
    """

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def has_stderr(self) -> bool:
        return self.stderr != ""


# Signature shared by run_captured and the fake runners used in tests.
Runner = Callable[[Sequence[str], Path], ProcessOutput]


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_defaults(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return kwargs


def safe_popen(cmd: Sequence[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    Args:
        cmd: Command and arguments (same as subprocess.Popen)
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle

    Note:
        - If 'creationflags' is explicitly provided in kwargs,
          it will be OR'd with platform defaults to preserve custom flags.
        - If 'stdin' is explicitly provided in kwargs, it will be used as-is.
          Otherwise, stdin is automatically redirected to subprocess.DEVNULL.
    """
    return subprocess.Popen(list(cmd), **_apply_defaults(kwargs))


def run_captured(cmd: Sequence[str], cwd: Path, timeout: Optional[float] = None) -> ProcessOutput:
    """Run a command to completion, capturing stdout and stderr separately.

    The whole stderr stream is accumulated before the process is classified
    by the caller. The process handle and pipes are closed on every path,
    including timeouts and interrupts; a still-running child is killed.

    Args:
        cmd: Command and arguments
        cwd: Working directory for the child process
        timeout: Optional timeout in seconds

    Returns:
        ProcessOutput with exit code and decoded output

    Raises:
        FileNotFoundError: If the executable does not exist
        subprocess.TimeoutExpired: If the timeout elapses
    """
    with safe_popen(
        cmd,
        cwd=str(cwd),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    ) as process:
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except BaseException:
            process.kill()
            process.wait()
            raise
        return ProcessOutput(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
