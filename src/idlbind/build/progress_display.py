"""Rich-based live display of per-source compilation status.

One line per source, transitioning through:

    Pending -> Compiling (spinner) -> Compiled (checkmark) 1.2s
                                   -> Failed (cross) <first line of stderr>

Sources found up to date are shown as Cached. Thread-safe: compile workers
call on_compile() concurrently while Rich renders from its own thread.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import CompileStatus

# Braille spinner frames for the RUNNING state
_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_STATUS_LABELS = {
    CompileStatus.PENDING: ("Pending", "dim"),
    CompileStatus.RUNNING: ("Compiling", "blue"),
    CompileStatus.SKIPPED: ("Cached", "dim green"),
    CompileStatus.COMPILED: ("Compiled", "green"),
    CompileStatus.FAILED: ("Failed", "red bold"),
    CompileStatus.CANCELLED: ("Cancelled", "yellow"),
}


class _SourceDisplayState:
    """Internal state for a single source's display line."""

    __slots__ = ("name", "status", "detail", "elapsed", "start_time")

    def __init__(self, name: str) -> None:
        self.name = name
        self.status = CompileStatus.PENDING
        self.detail: str = ""
        self.elapsed: float = 0.0
        self.start_time: float | None = None


class CompileProgressDisplay:
    """Live compile status table, implementing CompileCallback.

    Args:
        console: Rich Console instance for rendering. If None, creates a new one.
        library_name: Library name for the header line.
        refresh_per_second: Display refresh rate.
        show_cached: Also list sources that were up to date.
    """

    def __init__(self, console: Console | None, library_name: str, refresh_per_second: int = 10, show_cached: bool = False) -> None:
        self._console = console if console is not None else Console()
        self._library_name = library_name
        self._refresh_per_second = refresh_per_second
        self._show_cached = show_cached
        self._states: dict[str, _SourceDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def on_compile(self, source: str, status: CompileStatus, detail: str) -> None:
        """Update the display state for a source. Thread-safe."""
        with self._lock:
            state = self._states.get(source)
            if state is None:
                state = _SourceDisplayState(source)
                self._states[source] = state
                self._order.append(source)

            if status == CompileStatus.RUNNING:
                state.start_time = time.monotonic()

            state.status = status
            state.detail = detail
            if state.start_time is not None:
                state.elapsed = time.monotonic() - state.start_time

        if self._live is not None:
            self._live.update(self._render_display())

    def start(self) -> None:
        self._live = Live(
            self._render_display(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.update(self._render_display())
            self._live.stop()
            self._live = None

    def _render_display(self) -> Group:
        header = Text(f"\nCompiling {self._library_name}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Source", style="bold", no_wrap=True, min_width=32)
        table.add_column("Status", no_wrap=True, min_width=10)
        table.add_column("Detail", no_wrap=True, min_width=30)

        with self._lock:
            for name in self._order:
                state = self._states[name]
                if state.status == CompileStatus.SKIPPED and not self._show_cached:
                    continue
                label, style = _STATUS_LABELS[state.status]
                table.add_row(Text(state.name), Text(label, style=style), self._format_detail(state))
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            counts = {status: 0 for status in CompileStatus}
            for state in self._states.values():
                counts[state.status] += 1

        parts = [f"{len(self._states)} sources"]
        if counts[CompileStatus.RUNNING]:
            parts.append(f"{counts[CompileStatus.RUNNING]} compiling")
        if counts[CompileStatus.COMPILED]:
            parts.append(f"{counts[CompileStatus.COMPILED]} compiled")
        if counts[CompileStatus.SKIPPED]:
            parts.append(f"{counts[CompileStatus.SKIPPED]} cached")
        if counts[CompileStatus.FAILED]:
            parts.append(f"{counts[CompileStatus.FAILED]} failed")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    def _format_detail(self, state: _SourceDisplayState) -> Text:
        if state.status == CompileStatus.RUNNING:
            spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
            return Text(spinner, style="blue")
        if state.status == CompileStatus.COMPILED:
            elapsed_str = f"{state.elapsed:.1f}s" if state.elapsed > 0 else ""
            return Text(f"✓ {elapsed_str}", style="green")
        if state.status == CompileStatus.FAILED:
            first_line = state.detail.splitlines()[0] if state.detail else "Error"
            return Text(f"✗ {first_line}", style="red")
        return Text("")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Get a snapshot of current display states for testing."""
        with self._lock:
            return [
                {
                    "name": self._states[name].name,
                    "status": self._states[name].status,
                    "detail": self._states[name].detail,
                    "elapsed": self._states[name].elapsed,
                }
                for name in self._order
            ]

    def __enter__(self) -> "CompileProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
