"""Progress callback protocol for the compilation scheduler.

Compile workers report each source's transitions through this interface;
the Rich display layer implements it to render live status.
"""

from typing import Protocol, runtime_checkable

from .models import CompileStatus


@runtime_checkable
class CompileCallback(Protocol):
    """Protocol for receiving per-source compile updates.

    Called from worker threads: implementations must be thread-safe.
    """

    def on_compile(self, source: str, status: CompileStatus, detail: str) -> None:
        """Called when a source changes state.

        Args:
            source: Root-relative source path (e.g. "sources/foo.cpp").
            status: New status of the source.
            detail: Human-readable detail (error text for FAILED).
        """
        ...


class NullCallback:
    """No-op callback for tests and non-interactive use."""

    def on_compile(self, source: str, status: CompileStatus, detail: str) -> None:
        pass
