"""Incremental binding build pipeline.

Regenerates Haxe bindings for a native library from its WebIDL description,
compiles the library's C/C++ sources with Emscripten, and links them into a
single-file JavaScript module, doing only the work that timestamps say is
stale.

Public API:
    BindingBuildOrchestrator: Runs the whole pipeline for one or more libraries.
    CompilationScheduler: Compiles the stale subset of a source list in parallel.
    LinkStage: Links object artifacts into the final library when needed.
"""

from .binding_generator import BindingGenerationError, BindingGenerator
from .callbacks import CompileCallback, NullCallback
from .compile_pool import CompilePool, PoolRun
from .compiler import CompilationScheduler, CompileError, check_unique_objects
from .linker import LinkError, LinkStage
from .models import (
    BuildResult,
    BuildTarget,
    CompileOutcome,
    CompileResult,
    CompileStatus,
    LinkOutcome,
    LinkStatus,
    SourceRecord,
    StalenessVerdict,
)
from .orchestrator import BindingBuildOrchestrator
from .progress_display import CompileProgressDisplay
from .source_scanner import SourceScanner, discover
from .staleness import evaluate, evaluate_target
from .toolchain import ToolchainHandle, ToolchainNotFoundError, ToolchainResolver

__all__ = [
    "BindingBuildOrchestrator",
    "BindingGenerationError",
    "BindingGenerator",
    "BuildResult",
    "BuildTarget",
    "CompilationScheduler",
    "CompileCallback",
    "CompileError",
    "CompileOutcome",
    "CompilePool",
    "CompileProgressDisplay",
    "CompileResult",
    "CompileStatus",
    "LinkError",
    "LinkOutcome",
    "LinkStage",
    "LinkStatus",
    "NullCallback",
    "PoolRun",
    "SourceRecord",
    "SourceScanner",
    "StalenessVerdict",
    "ToolchainHandle",
    "ToolchainNotFoundError",
    "ToolchainResolver",
    "check_unique_objects",
    "discover",
    "evaluate",
    "evaluate_target",
]
