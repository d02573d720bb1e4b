"""Interface-description compiler adapter.

Runs the Haxe WebIDL binder macro for a library. The binder is treated as a
black box: success is observed only through the process exit code and the
presence of the expected binding file afterwards. Its output is never parsed.
"""

import logging
from pathlib import Path

from idlbind.errors import IdlBindError
from idlbind.output import log_detail, log_error
from idlbind.subprocess_utils import ProcessOutput, Runner, run_captured

from . import timestamps
from .models import BuildTarget, StalenessVerdict

logger = logging.getLogger(__name__)

BINDER_MACRO = "kha.internal.WebIdlBinder.generate"
CHOP_PREFIX_DEFINE = "khabind_chop_prefix"
AUTO_GC_DEFINE = "khabind_auto_gc"


class BindingGenerationError(IdlBindError):
    """Raised when the interface compiler fails or produces no binding."""

    pass


class BindingGenerator:
    """Invokes the Haxe WebIDL binder.

    Args:
        haxe: Haxe compiler executable
        kha: Kha framework root (provides Sources/ and Tools/webidl/)
        runner: Subprocess runner (injectable for tests)
    """

    def __init__(self, haxe: str, kha: Path, runner: Runner = run_captured) -> None:
        self.haxe = haxe
        self.kha = Path(kha)
        self.runner = runner

    def command(self, rebuild_all: bool, chop_prefix: str = "", auto_gc: bool = True) -> list[str]:
        """Build the binder command line.

        The binder macro reads the library's naming and GC settings from
        compiler defines.
        """
        cmd = [
            self.haxe,
            "-cp",
            str(self.kha / "Sources"),
            "-cp",
            str(self.kha / "Tools" / "webidl"),
        ]
        if chop_prefix:
            cmd.extend(["-D", f"{CHOP_PREFIX_DEFINE}={chop_prefix}"])
        cmd.extend(["-D", f"{AUTO_GC_DEFINE}={'true' if auto_gc else 'false'}"])
        cmd.extend(["--macro", f"{BINDER_MACRO}({'true' if rebuild_all else 'false'})"])
        return cmd

    def generate(self, target: BuildTarget, verdict: StalenessVerdict) -> ProcessOutput:
        """Regenerate the target's bindings.

        Args:
            target: Build target
            verdict: Staleness verdict; REBUILD_ALL asks the binder for a full regeneration

        Returns:
            Captured binder output

        Raises:
            BindingGenerationError: On non-zero exit, or if the binding file is missing afterwards
        """
        cmd = self.command(verdict.forces_full_rebuild, target.chop_prefix, target.auto_gc)
        logger.debug("Running binder: %s", " ".join(cmd))
        try:
            result = self.runner(cmd, target.root_dir)
        except OSError as e:
            raise BindingGenerationError(f"Failed to run {self.haxe}: {e}") from e

        if result.stdout:
            log_detail(result.stdout.rstrip())

        if result.returncode != 0:
            if result.stderr:
                log_error(result.stderr.rstrip())
            raise BindingGenerationError(
                f"Binding generation failed for {target.name} (exit code {result.returncode})" + (f": {result.stderr.strip()}" if result.stderr else "")
            )

        if not timestamps.exists(target.binding_file):
            raise BindingGenerationError(f"Binding generation for {target.name} produced no binding file: {target.binding_file}")

        return result
