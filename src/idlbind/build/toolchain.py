"""Emscripten toolchain resolution.

The toolchain is located lazily: a pipeline in which nothing is stale never
requires Emscripten to be installed. The first compile or link that needs
it calls ToolchainResolver.resolve(); the handle is then cached for the rest
of the run and shared read-only by every compile worker.
"""

import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from idlbind.errors import IdlBindError

logger = logging.getLogger(__name__)

TOOLCHAIN_ENV_VAR = "EMSCRIPTEN"


class ToolchainNotFoundError(IdlBindError):
    """Raised when the toolchain cannot be resolved at first real need."""

    pass


@dataclass(frozen=True)
class ToolchainHandle:
    """Resolved Emscripten installation.

    Attributes:
        root: Installation directory (value of $EMSCRIPTEN)
        compiler: Compiler driver used for `-c` compilation
        linker: Driver used to link object artifacts into the final library
    """

    root: Path
    compiler: Path
    linker: Path


def _driver_name() -> str:
    return "emcc.bat" if sys.platform == "win32" else "emcc"


class ToolchainResolver:
    """Resolves the toolchain at most once per pipeline run.

    Thread-safe: concurrent compile workers may race on the first call;
    exactly one of them reads the environment.

    Args:
        environ: Environment mapping to read (defaults to os.environ)
        check_exists: Also require the compiler driver to exist on disk
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None, check_exists: bool = False) -> None:
        self._environ = environ if environ is not None else os.environ
        self._check_exists = check_exists
        self._handle: Optional[ToolchainHandle] = None
        self._resolve_count = 0
        self._lock = threading.Lock()

    def resolve(self) -> ToolchainHandle:
        """Return the toolchain handle, resolving it on first use.

        Returns:
            Cached ToolchainHandle

        Raises:
            ToolchainNotFoundError: If $EMSCRIPTEN is unset, or the compiler
                driver is missing when check_exists is enabled
        """
        with self._lock:
            if self._handle is not None:
                return self._handle

            self._resolve_count += 1
            emsdk = self._environ.get(TOOLCHAIN_ENV_VAR)
            if not emsdk:
                msg = f"{TOOLCHAIN_ENV_VAR} environment variable not set cannot compile C++ library for Javascript"
                logger.error(msg)
                raise ToolchainNotFoundError(msg)

            root = Path(emsdk)
            driver = root / _driver_name()
            if self._check_exists and not driver.exists():
                msg = f"Emscripten compiler not found: {driver}. Ensure {TOOLCHAIN_ENV_VAR} points at the emsdk installation."
                logger.error(msg)
                raise ToolchainNotFoundError(msg)

            self._handle = ToolchainHandle(root=root, compiler=driver, linker=driver)
            logger.debug("Resolved toolchain: %s", driver)
            return self._handle

    @property
    def is_resolved(self) -> bool:
        with self._lock:
            return self._handle is not None

    @property
    def resolve_count(self) -> int:
        """Number of times the environment was actually consulted."""
        with self._lock:
            return self._resolve_count

    def reset(self) -> None:
        """Forget the cached handle. Only used by tests."""
        with self._lock:
            self._handle = None
            self._resolve_count = 0
