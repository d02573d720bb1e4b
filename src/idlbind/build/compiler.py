"""Compilation scheduler for native library sources.

For every discovered source:
    1. Decide staleness: the object artifact must exist, be strictly newer
       than the source, and no full rebuild may be forced. Otherwise the
       source is compiled.
    2. Resolve the toolchain once, when the first stale source is found.
    3. Compile stale sources on a CompilePool bounded by the concurrency
       limit, fail-fast on the first error.

Any stderr output from the compiler fails the unit, even with exit code 0.
"""

import logging
import multiprocessing
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from idlbind.errors import IdlBindError
from idlbind.output import log_file
from idlbind.subprocess_utils import ProcessOutput, Runner, run_captured

from . import timestamps
from .callbacks import CompileCallback, NullCallback
from .compile_pool import CompilePool
from .models import (
    BuildTarget,
    CompileOutcome,
    CompileResult,
    CompileStatus,
    SourceRecord,
)
from .toolchain import ToolchainHandle, ToolchainResolver

logger = logging.getLogger(__name__)


class CompileError(IdlBindError):
    """Raised when a source fails to compile.

    The message is the failing source's captured diagnostic output.

    Attributes:
        source: The first source that failed
        outcomes: Per-source outcomes at the time the pipeline stopped
    """

    def __init__(self, message: str, source: Optional[SourceRecord] = None, outcomes: Sequence[CompileOutcome] = ()) -> None:
        super().__init__(message)
        self.source = source
        self.outcomes = tuple(outcomes)


class _UnitFailure(Exception):
    """Internal: carries a failing unit's source and diagnostic through the pool."""

    def __init__(self, source: SourceRecord, message: str) -> None:
        super().__init__(message)
        self.source = source
        self.message = message


def default_concurrency() -> int:
    """Default concurrency limit: the host's logical core count."""
    return multiprocessing.cpu_count()


def check_unique_objects(sources: Sequence[SourceRecord]) -> None:
    """Ensure no two sources write the same object artifact.

    Raises:
        ValueError: If two sources map to the same object path (e.g. foo.c and foo.cpp).
    """
    seen: dict[Path, SourceRecord] = {}
    for source in sources:
        other = seen.get(source.object_path)
        if other is not None:
            raise ValueError(f"Sources '{other.display_name}' and '{source.display_name}' both compile to {source.object_path}")
        seen[source.object_path] = source


class CompilationScheduler:
    """Compiles the stale subset of a target's sources in parallel.

    Args:
        target: Build target providing root dir, include dirs and optimization level.
        resolver: Toolchain resolver shared with the link stage.
        concurrency: Maximum concurrent compiler processes (default: CPU count).
        fail_fast: Stop starting new compiles after the first failure.
        runner: Subprocess runner (injectable for tests).
        callback: Progress callback for per-source updates.
    """

    def __init__(
        self,
        target: BuildTarget,
        resolver: ToolchainResolver,
        concurrency: Optional[int] = None,
        fail_fast: bool = True,
        runner: Runner = run_captured,
        callback: Optional[CompileCallback] = None,
    ) -> None:
        self.target = target
        self.resolver = resolver
        self.concurrency = concurrency if concurrency is not None else default_concurrency()
        self.fail_fast = fail_fast
        self.runner = runner
        self.callback: CompileCallback = callback if callback is not None else NullCallback()

    def needs_compile(self, source: SourceRecord, force: bool) -> bool:
        """Check whether a source must be (re)compiled.

        Args:
            source: Discovered source
            force: Global full-rebuild flag

        Returns:
            True unless the object artifact exists, is newer than the source,
            and no full rebuild is forced
        """
        if force:
            return True
        return not timestamps.is_up_to_date(source.object_path, source.path)

    def compile_all(self, sources: Sequence[SourceRecord], force: bool = False) -> CompileResult:
        """Compile every stale source.

        Args:
            sources: Discovered sources, in discovery order
            force: Compile every source regardless of timestamps (RebuildAll)

        Returns:
            CompileResult with the ordered artifact set and the any_changed flag

        Raises:
            ValueError: If two sources share an object path
            ToolchainNotFoundError: If a compile is needed but the toolchain is missing
            CompileError: If any compile fails (raised after in-flight compiles drain)
        """
        check_unique_objects(sources)

        stale = [s for s in sources if self.needs_compile(s, force)]
        stale_set = set(stale)
        for source in sources:
            if source not in stale_set:
                log_file("Compiling", source.display_name, cached=True)
                self.callback.on_compile(source.display_name, CompileStatus.SKIPPED, "up to date")

        artifacts = tuple(s.object_path for s in sources)
        if not stale:
            logger.debug("All %d sources up to date", len(sources))
            outcomes = tuple(CompileOutcome(s, CompileStatus.SKIPPED) for s in sources)
            return CompileResult(artifacts=artifacts, any_changed=False, outcomes=outcomes)

        # First real need: resolve once, fatal if missing
        toolchain = self.resolver.resolve()

        for source in stale:
            self.callback.on_compile(source.display_name, CompileStatus.PENDING, "")

        pool = CompilePool(max_workers=self.concurrency, fail_fast=self.fail_fast)
        jobs = [self._make_job(source, toolchain) for source in stale]
        logger.debug("Compiling %d of %d sources with %d workers", len(stale), len(sources), self.concurrency)
        run = pool.run(jobs)

        outcomes = self._collect_outcomes(sources, stale, run.futures)

        if run.first_error is not None:
            error = run.first_error
            if isinstance(error, _UnitFailure):
                logger.error("Compilation failed for %s", error.source.display_name)
                raise CompileError(error.message, source=error.source, outcomes=outcomes)
            raise error

        any_changed = any(o.status == CompileStatus.COMPILED for o in outcomes)
        return CompileResult(artifacts=artifacts, any_changed=any_changed, outcomes=outcomes)

    def _make_job(self, source: SourceRecord, toolchain: ToolchainHandle) -> Callable[[], ProcessOutput]:
        def job() -> ProcessOutput:
            return self.compile_source(source, toolchain)

        return job

    def compile_command(self, source: SourceRecord, toolchain: ToolchainHandle) -> list[str]:
        """Build the compiler command line for one source."""
        cmd = [
            str(toolchain.compiler),
            self.target.optimization_flag,
            f"-I{self.target.sources_dir}",
        ]
        cmd.extend(f"-I{inc}" for inc in self.target.includes)
        cmd.extend(["-c", str(source.path), "-o", str(source.object_path)])
        return cmd

    def compile_source(self, source: SourceRecord, toolchain: ToolchainHandle) -> ProcessOutput:
        """Compile one source in the calling worker thread.

        Raises:
            _UnitFailure: If the compiler wrote to stderr or exited non-zero
        """
        self.callback.on_compile(source.display_name, CompileStatus.RUNNING, "")
        log_file("Compiling", source.display_name, verbose_only=False)

        cmd = self.compile_command(source, toolchain)

        try:
            source.object_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            message = f"Cannot create object directory for {source.display_name}: {e}"
            self.callback.on_compile(source.display_name, CompileStatus.FAILED, message)
            raise _UnitFailure(source, message) from e

        try:
            result = self.runner(cmd, self.target.root_dir)
        except OSError as e:
            message = f"Failed to run {cmd[0]}: {e}"
            self.callback.on_compile(source.display_name, CompileStatus.FAILED, message)
            raise _UnitFailure(source, message) from e

        if result.has_stderr:
            message = result.stderr
        elif result.returncode != 0:
            message = f"{Path(cmd[0]).name} exited with code {result.returncode}"
            if result.stdout:
                message += f"\n{result.stdout}"
        else:
            self.callback.on_compile(source.display_name, CompileStatus.COMPILED, "")
            return result

        self.callback.on_compile(source.display_name, CompileStatus.FAILED, message.strip())
        raise _UnitFailure(source, message)

    def _collect_outcomes(
        self,
        sources: Sequence[SourceRecord],
        stale: Sequence[SourceRecord],
        futures: Sequence[Future[Any]],
    ) -> tuple[CompileOutcome, ...]:
        by_source: dict[SourceRecord, CompileOutcome] = {}
        for source, future in zip(stale, futures):
            error = future.exception()
            if error is None:
                by_source[source] = CompileOutcome(source, CompileStatus.COMPILED)
            elif isinstance(error, _UnitFailure):
                by_source[source] = CompileOutcome(source, CompileStatus.FAILED, error.message)
            else:
                by_source[source] = CompileOutcome(source, CompileStatus.FAILED, str(error))
        # Stale sources past the submitted prefix were never started
        for source in stale[len(futures) :]:
            by_source[source] = CompileOutcome(source, CompileStatus.CANCELLED)
            self.callback.on_compile(source.display_name, CompileStatus.CANCELLED, "")

        return tuple(by_source.get(s, CompileOutcome(s, CompileStatus.SKIPPED)) for s in sources)
