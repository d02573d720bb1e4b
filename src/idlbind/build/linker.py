"""Link stage: object artifacts -> single-file JavaScript library.

Linking is skipped when no object changed and the final artifact already
exists on disk; that artifact is assumed to be correctly linked. Otherwise
the linker runs once, synchronously, over the full ordered artifact set.

Linkers routinely print informational warnings on stderr, so stderr output
is logged as an error but does not fail the stage. A non-zero exit code does.
"""

import logging
import shlex
from pathlib import Path
from typing import Sequence

from idlbind.errors import IdlBindError
from idlbind.output import log_detail, log_error
from idlbind.subprocess_utils import Runner, run_captured

from . import timestamps
from .models import BuildTarget, LinkOutcome, LinkStatus
from .toolchain import ToolchainHandle, ToolchainResolver

logger = logging.getLogger(__name__)


class LinkError(IdlBindError):
    """Raised by LinkStage.link_or_raise when linking fails."""

    pass


def split_extra_args(extra_args: Sequence[str]) -> list[str]:
    """Split user-supplied linker arguments into individual argv entries.

    Each entry may hold several space-separated, possibly quoted arguments
    ("-s ALLOW_MEMORY_GROWTH=1").
    """
    args: list[str] = []
    for entry in extra_args:
        args.extend(shlex.split(entry))
    return args


class LinkStage:
    """Links a target's object artifacts into its final artifact.

    Args:
        resolver: Toolchain resolver shared with the compilation scheduler.
        runner: Subprocess runner (injectable for tests).
    """

    def __init__(self, resolver: ToolchainResolver, runner: Runner = run_captured) -> None:
        self.resolver = resolver
        self.runner = runner

    def needs_link(self, target: BuildTarget, any_changed: bool) -> bool:
        return any_changed or not timestamps.exists(target.artifact_path)

    def link_command(self, artifacts: Sequence[Path], target: BuildTarget, toolchain: ToolchainHandle) -> list[str]:
        """Build the linker command line."""
        cmd = [str(toolchain.linker)]
        cmd.extend(str(a) for a in artifacts)
        cmd.extend(
            [
                target.optimization_flag,
                "-s",
                f"EXPORT_NAME={target.artifact_name}",
                "-s",
                "MODULARIZE=1",
                "-s",
                "SINGLE_FILE=1",
                "-s",
                "WASM=0",
            ]
        )
        cmd.extend(split_extra_args(target.extra_link_args))
        cmd.extend(["-o", str(target.artifact_path)])
        return cmd

    def link(self, artifacts: Sequence[Path], target: BuildTarget, any_changed: bool) -> LinkOutcome:
        """Link the artifact set if anything changed or the artifact is missing.

        Args:
            artifacts: Ordered object artifact paths from the compilation scheduler
            target: Build target
            any_changed: Whether compilation produced any new object

        Returns:
            LinkOutcome (LINKED, SKIPPED_UP_TO_DATE or FAILED)

        Raises:
            ToolchainNotFoundError: If linking is needed but the toolchain is missing
        """
        artifact_path = target.artifact_path
        if not self.needs_link(target, any_changed):
            logger.debug("Link skipped, %s is up to date", artifact_path)
            return LinkOutcome(status=LinkStatus.SKIPPED_UP_TO_DATE, artifact_path=artifact_path)

        log_detail("Linking Javascript Library")
        toolchain = self.resolver.resolve()
        cmd = self.link_command(artifacts, target, toolchain)
        log_detail(f"running emcc: {' '.join(cmd)}")

        try:
            artifact_path.parent.mkdir(parents=True, exist_ok=True)
            result = self.runner(cmd, target.root_dir)
        except OSError as e:
            message = f"Failed to run {cmd[0]}: {e}"
            log_error(message)
            return LinkOutcome(status=LinkStatus.FAILED, artifact_path=artifact_path, message=message)

        if result.stderr:
            log_error(result.stderr)
        if result.stdout:
            log_detail(result.stdout)

        if result.returncode != 0:
            message = result.stderr.strip() or f"{Path(cmd[0]).name} exited with code {result.returncode}"
            logger.error("Link failed for %s (exit code %d)", target.name, result.returncode)
            return LinkOutcome(
                status=LinkStatus.FAILED,
                artifact_path=artifact_path,
                message=message,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return LinkOutcome(
            status=LinkStatus.LINKED,
            artifact_path=artifact_path,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def link_or_raise(self, artifacts: Sequence[Path], target: BuildTarget, any_changed: bool) -> LinkOutcome:
        """Like link(), but raise LinkError for a FAILED outcome."""
        outcome = self.link(artifacts, target, any_changed)
        if outcome.status == LinkStatus.FAILED:
            raise LinkError(outcome.message)
        return outcome
