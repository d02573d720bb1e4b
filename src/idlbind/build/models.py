"""Data models for the incremental binding build pipeline.

Defines the types passed between pipeline stages:
- BuildTarget: One native library to bind, compile and link (read-only)
- StalenessVerdict: How much of the bindings must be regenerated
- SourceRecord: One discovered compilable file and its object artifact
- CompileOutcome / CompileResult: Per-source and aggregate compile results
- LinkOutcome: Terminal state of the link stage
- BuildResult: Pipeline-level outcome for one target

All of these are created fresh for every pipeline run. Persistent state
lives only on disk, keyed by path.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from idlbind.config.bind_config import BindConfig

BINDING_DIR_NAME = "khabind"
OBJECT_DIR_NAME = "bytecode"
OBJECT_SUFFIX = ".bc"
ARTIFACT_SUFFIX = ".js"


class StalenessVerdict(Enum):
    """Rebuild scope decided once per target at pipeline start."""

    NO_OP = "no-op"
    REBUILD_BINDINGS_ONLY = "rebuild-bindings-only"
    REBUILD_ALL = "rebuild-all"

    @property
    def needs_bindings(self) -> bool:
        return self is not StalenessVerdict.NO_OP

    @property
    def forces_full_rebuild(self) -> bool:
        return self is StalenessVerdict.REBUILD_ALL


@dataclass(frozen=True)
class BuildTarget:
    """A native library to generate bindings for and compile.

    Attributes:
        name: Library name shown in the build log (the root directory name)
        root_dir: Library root directory
        config_file: Build-configuration file whose changes invalidate everything
        description_file: Interface-description (WebIDL) file
        binding_file: Generated binding glue file
        sources_dir: Native source directory
        artifact_name: Name of the produced library (also its export name)
        build_dir: Build root holding object artifacts and the final artifact
        includes: Extra include directories for compilation
        optimization_level: Optimization level passed as -O<level>
        extra_link_args: Additional user-supplied linker arguments
        chop_prefix: Prefix the binder strips from native names
        auto_gc: Whether the binder makes generated wrappers garbage collected
    """

    name: str
    root_dir: Path
    config_file: Path
    description_file: Path
    binding_file: Path
    sources_dir: Path
    artifact_name: str
    build_dir: Path
    includes: tuple[Path, ...] = ()
    optimization_level: str = "2"
    extra_link_args: tuple[str, ...] = ()
    chop_prefix: str = ""
    auto_gc: bool = True

    @classmethod
    def from_config(cls, root_dir: Path, config: "BindConfig") -> "BuildTarget":
        """Derive all target paths from a loaded project configuration.

        Args:
            root_dir: Library root directory
            config: Parsed project configuration

        Returns:
            BuildTarget with absolute paths
        """
        root = Path(root_dir).resolve()
        binding_dir = root / BINDING_DIR_NAME
        return cls(
            name=root.name,
            root_dir=root,
            config_file=config.config_file,
            description_file=root / config.idl_file,
            binding_file=binding_dir / f"{config.native_lib}.cpp",
            sources_dir=root / config.sources_dir,
            artifact_name=config.native_lib,
            build_dir=binding_dir,
            includes=tuple(root / inc for inc in config.includes),
            optimization_level=config.optimization_level,
            extra_link_args=config.extra_args,
            chop_prefix=config.chop_prefix,
            auto_gc=config.auto_gc,
        )

    @property
    def binding_dir(self) -> Path:
        return self.binding_file.parent

    @property
    def object_dir(self) -> Path:
        """Directory holding <relative-source-path>.bc object artifacts."""
        return self.build_dir / OBJECT_DIR_NAME

    @property
    def artifact_path(self) -> Path:
        """Final linked artifact: <buildroot>/<artifactName>.js"""
        return self.build_dir / f"{self.artifact_name}{ARTIFACT_SUFFIX}"

    @property
    def source_roots(self) -> tuple[Path, ...]:
        """Directories scanned for compilable sources, in scan order."""
        return (self.sources_dir, self.binding_dir)

    @property
    def optimization_flag(self) -> str:
        return f"-O{self.optimization_level}" if self.optimization_level else "-O2"


@dataclass(frozen=True)
class SourceRecord:
    """One discovered compilable source file.

    Attributes:
        path: Absolute path of the source file
        relative_path: Path relative to the library root
        object_path: Object artifact path (same relative path, .bc extension)
    """

    path: Path
    relative_path: Path
    object_path: Path

    @property
    def display_name(self) -> str:
        return self.relative_path.as_posix()


class CompileStatus(Enum):
    """State of one source in the compilation scheduler."""

    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    COMPILED = "compiled"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (CompileStatus.PENDING, CompileStatus.RUNNING)


@dataclass(frozen=True)
class CompileOutcome:
    """Per-source compile result.

    Attributes:
        source: The source this outcome belongs to
        status: SKIPPED, COMPILED, FAILED or CANCELLED
        message: Diagnostic output for FAILED outcomes
    """

    source: SourceRecord
    status: CompileStatus
    message: str = ""


@dataclass(frozen=True)
class CompileResult:
    """Aggregate result of compiling every discovered source.

    Attributes:
        artifacts: Ordered object artifact paths, the linker input (ArtifactSet)
        any_changed: True iff at least one source was actually compiled
        outcomes: Per-source outcomes in discovery order
    """

    artifacts: tuple[Path, ...]
    any_changed: bool
    outcomes: tuple[CompileOutcome, ...] = ()

    @property
    def compiled_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == CompileStatus.COMPILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status == CompileStatus.SKIPPED)


class LinkStatus(Enum):
    """Terminal state of the link stage."""

    LINKED = "linked"
    SKIPPED_UP_TO_DATE = "skipped-up-to-date"
    FAILED = "failed"


@dataclass(frozen=True)
class LinkOutcome:
    """Result of the link stage.

    Attributes:
        status: LINKED, SKIPPED_UP_TO_DATE or FAILED
        artifact_path: Final artifact path
        message: Failure message for FAILED outcomes
        stdout: Linker stdout (informational)
        stderr: Linker stderr (diagnostics, not failing by itself)
    """

    status: LinkStatus
    artifact_path: Path
    message: str = ""
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status != LinkStatus.FAILED


@dataclass
class BuildResult:
    """Pipeline-level outcome for one target.

    Attributes:
        target_name: Name of the built library
        success: False if any stage failed
        message: The single fatal diagnostic when success is False
        skipped: True if the target's platform does not support bindings
        verdict: Staleness verdict, None if the pipeline stopped before it
        compile_result: Compilation result, None if compilation did not run
        link_outcome: Link outcome, None if linking did not run
        binding_file: Generated binding glue path
        artifact_path: Final artifact path
        log: Human-readable build log captured during the run
        elapsed: Wall-clock time in seconds
    """

    target_name: str
    success: bool
    message: str = ""
    skipped: bool = False
    verdict: Optional[StalenessVerdict] = None
    compile_result: Optional[CompileResult] = None
    link_outcome: Optional[LinkOutcome] = None
    binding_file: Optional[Path] = None
    artifact_path: Optional[Path] = None
    log: str = ""
    elapsed: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "target_name": self.target_name,
            "success": self.success,
            "message": self.message,
            "skipped": self.skipped,
            "verdict": self.verdict.value if self.verdict is not None else None,
            "any_changed": self.compile_result.any_changed if self.compile_result is not None else None,
            "link_status": self.link_outcome.status.value if self.link_outcome is not None else None,
            "binding_file": str(self.binding_file) if self.binding_file is not None else None,
            "artifact_path": str(self.artifact_path) if self.artifact_path is not None else None,
            "elapsed": self.elapsed,
        }
