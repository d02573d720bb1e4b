"""Binding build orchestrator.

Drives one library through the pipeline:

    1. Platform gating (only Krom, HTML5 and native HashLink consume bindings)
    2. Staleness verdict, computed once from timestamps
    3. Binding generation, only if the verdict is not NO_OP
    4. Source discovery (sources dir + generated binding dir)
    5. Compilation of stale sources, bounded and fail-fast
    6. Link, only if something was compiled or the artifact is missing

Stages 4 to 6 run only for targets that consume the library as JavaScript.
Every IdlBindError or OSError ends the target's build with a single fatal
message; the caller may carry on with other targets.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Sequence

from idlbind.config.bind_config import BuildOptions, is_tty, load_bind_config
from idlbind.errors import IdlBindError
from idlbind.output import capture_output, log, log_error, log_warning, set_verbose
from idlbind.subprocess_utils import Runner, run_captured

from .binding_generator import BindingGenerator
from .callbacks import CompileCallback, NullCallback
from .compiler import CompilationScheduler
from .linker import LinkStage
from .models import BuildResult, BuildTarget, LinkStatus
from .progress_display import CompileProgressDisplay
from .source_scanner import discover
from .staleness import evaluate_target
from .toolchain import ToolchainResolver

logger = logging.getLogger(__name__)


class BindingBuildOrchestrator:
    """Runs the incremental binding pipeline for one or more libraries.

    A fresh ToolchainResolver is created for every target build, so the
    toolchain is resolved at most once per run and only when needed.

    Args:
        options: Run options (platform, Kha/Haxe paths, concurrency)
        runner: Subprocess runner for every external tool (injectable for tests)
        environ: Environment used to resolve the toolchain (defaults to os.environ)
        callback: Compile progress callback; overrides the TUI selection
    """

    def __init__(
        self,
        options: BuildOptions,
        runner: Runner = run_captured,
        environ: Optional[dict[str, str]] = None,
        callback: Optional[CompileCallback] = None,
    ) -> None:
        self.options = options
        self.runner = runner
        self.environ = environ
        self.callback = callback
        self.generator = BindingGenerator(options.haxe, options.kha, runner=runner)

    def build_library(self, lib_root: Path) -> BuildResult:
        """Load <lib_root>/idlbind.ini and build the library.

        Configuration errors are reported like any other build failure.
        """
        name = Path(lib_root).name
        try:
            config = load_bind_config(lib_root)
        except IdlBindError as e:
            log_error(str(e))
            return BuildResult(target_name=name, success=False, message=str(e))
        return self.build(BuildTarget.from_config(lib_root, config))

    def build(self, target: BuildTarget) -> BuildResult:
        """Run the pipeline for one target.

        Args:
            target: Build target (borrowed read-only)

        Returns:
            BuildResult; success is False with a single fatal message on failure
        """
        set_verbose(self.options.verbose)
        start = time.monotonic()
        with capture_output() as captured:
            result = self._build(target)
        result.log = captured.getvalue()
        result.elapsed = time.monotonic() - start
        return result

    def build_all(self, targets: Sequence[BuildTarget]) -> list[BuildResult]:
        """Build several targets in turn; a failing target does not stop the others."""
        return [self.build(target) for target in targets]

    def _build(self, target: BuildTarget) -> BuildResult:
        result = BuildResult(
            target_name=target.name,
            success=False,
            binding_file=target.binding_file,
            artifact_path=target.artifact_path if self.options.compiles_to_javascript else None,
        )

        if not self.options.supports_bindings:
            log_warning(f'Auto-binding library "{target.name}" to Haxe for target {self.options.platform} is not supported.')
            result.success = True
            result.skipped = True
            return result

        log(f"Generating bindings for: {target.name}")
        try:
            self._run_stages(target, result)
        except IdlBindError as e:
            result.success = False
            result.message = str(e)
            log_error(result.message)
            logger.error("Build of %s failed: %s", target.name, result.message)
            return result
        except ValueError as e:
            # Discovery found two sources sharing one object path
            result.success = False
            result.message = str(e)
            log_error(result.message)
            return result
        except OSError as e:
            result.success = False
            result.message = f"Filesystem error while building {target.name}: {e}"
            log_error(result.message)
            logger.error("Build of %s failed: %s", target.name, e)
            return result

        if result.success:
            log(f"Done generating bindings for: {target.name}")
        return result

    def _run_stages(self, target: BuildTarget, result: BuildResult) -> None:
        verdict = evaluate_target(target)
        result.verdict = verdict

        if verdict.needs_bindings:
            self.generator.generate(target, verdict)

        if not self.options.compiles_to_javascript:
            result.success = True
            return

        resolver = ToolchainResolver(environ=self.environ)
        sources = discover(target)

        callback = self._select_callback(target)
        scheduler = CompilationScheduler(
            target,
            resolver,
            concurrency=self.options.concurrency,
            fail_fast=self.options.fail_fast,
            runner=self.runner,
            callback=callback,
        )
        if isinstance(callback, CompileProgressDisplay):
            with callback:
                compile_result = scheduler.compile_all(sources, force=verdict.forces_full_rebuild)
        else:
            compile_result = scheduler.compile_all(sources, force=verdict.forces_full_rebuild)
        result.compile_result = compile_result

        link_stage = LinkStage(resolver, runner=self.runner)
        outcome = link_stage.link(compile_result.artifacts, target, compile_result.any_changed)
        result.link_outcome = outcome
        if outcome.status == LinkStatus.FAILED:
            result.message = outcome.message
            log_error(f"Linking {target.artifact_name} failed")
            return

        result.success = True

    def _select_callback(self, target: BuildTarget) -> CompileCallback:
        if self.callback is not None:
            return self.callback
        use_tui = self.options.use_tui if self.options.use_tui is not None else is_tty()
        if use_tui:
            return CompileProgressDisplay(console=None, library_name=target.name, show_cached=self.options.verbose)
        return NullCallback()
