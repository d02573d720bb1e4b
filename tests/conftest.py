"""Pytest configuration and fixtures for idlbind tests.

This conftest addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439

It also provides a fake toolchain runner and on-disk library builders shared by
the build pipeline tests.
"""

import os
import sys
import threading
import time
import warnings
from pathlib import Path
from typing import Optional, Sequence

import pytest

from idlbind import output
from idlbind.build.models import BuildTarget
from idlbind.config import load_bind_config
from idlbind.subprocess_utils import ProcessOutput

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)

# Age given to every hand-written input file
SOURCE_AGE = 1000.0
# Age given to binder output, so objects built right after it are strictly newer
BINDING_AGE = 100.0

EMSDK = "/opt/emsdk"


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    # Restore if they were closed during the test
    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _reset_output():  # noqa: PT004
    """Restore global build-log settings changed by a test."""
    yield
    output.set_verbose(True)
    output.set_output_file(None)


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    # After test execution, ensure streams aren't closed
    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


# ─── Helpers ──────────────────────────────────────────────────────────────────


def set_mtime(path: Path, age: float) -> None:
    """Set the modification time of path to `age` seconds in the past."""
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))


def write_file(path: Path, text: str = "", age: float = SOURCE_AGE) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    set_mtime(path, age)
    return path


DEFAULT_SOURCES = (
    "sources/b2Body.cpp",
    "sources/Common/b2Math.cpp",
    "sources/Common/b2Settings.c",
)


def make_library(parent: Path, name: str = "box2d", sources: Sequence[str] = DEFAULT_SOURCES, extra_ini: str = "") -> Path:
    """Create a library root with idlbind.ini, an IDL file and native sources.

    Every file is aged SOURCE_AGE seconds.

    Returns:
        The library root directory
    """
    root = parent / name
    write_file(
        root / "idlbind.ini",
        f"[binding]\nidl_file = {name}.idl\nnative_lib = {name}\nincludes = sources/Common\n{extra_ini}",
    )
    write_file(root / f"{name}.idl", "interface b2Vec2 { void b2Vec2(float x, float y); };\n")
    for source in sources:
        write_file(root / source, "int f() { return 0; }\n")
    return root


def make_target(root: Path) -> BuildTarget:
    return BuildTarget.from_config(root, load_bind_config(root))


def value_after(cmd: Sequence[str], flag: str) -> str:
    return cmd[list(cmd).index(flag) + 1]


class FakeToolchain:
    """Subprocess runner standing in for haxe and emcc.

    Compile commands write the object named after -o, link commands write the
    artifact named after -o, and binder commands write the binding file. Every
    invocation is recorded together with the highest number of invocations
    that were running at the same time.

    Behaviour per source is keyed by file name (e.g. "b2Math.cpp").

    Args:
        binding_file: File written by binder invocations (default:
            <cwd>/khabind/<cwd name>.cpp)
        compile_stderr: Stderr emitted by a source's compile
        compile_returncode: Exit code of a source's compile
        delays: Seconds a source's compile takes
        link_stderr: Stderr emitted by the linker
        link_returncode: Exit code of the linker
        binder_returncode: Exit code of the binder
        binder_writes: Whether the binder (re)writes the binding file
    """

    def __init__(
        self,
        binding_file: Optional[Path] = None,
        compile_stderr: Optional[dict[str, str]] = None,
        compile_returncode: Optional[dict[str, int]] = None,
        delays: Optional[dict[str, float]] = None,
        link_stderr: str = "",
        link_returncode: int = 0,
        binder_returncode: int = 0,
        binder_writes: bool = True,
    ) -> None:
        self.binding_file = binding_file
        self.compile_stderr = compile_stderr or {}
        self.compile_returncode = compile_returncode or {}
        self.delays = delays or {}
        self.link_stderr = link_stderr
        self.link_returncode = link_returncode
        self.binder_returncode = binder_returncode
        self.binder_writes = binder_writes

        self.calls: list[list[str]] = []
        self.cwds: list[Path] = []
        self.compiled: list[str] = []
        self.high_water = 0
        self._active = 0
        self._lock = threading.Lock()

    def __call__(self, cmd: Sequence[str], cwd: Path) -> ProcessOutput:
        cmd = list(cmd)
        with self._lock:
            self.calls.append(cmd)
            self.cwds.append(Path(cwd))
            self._active += 1
            self.high_water = max(self.high_water, self._active)
        try:
            if "--macro" in cmd:
                return self._bind(cmd, Path(cwd))
            if "-c" in cmd:
                return self._compile(cmd)
            return self._link(cmd)
        finally:
            with self._lock:
                self._active -= 1

    @property
    def compile_calls(self) -> list[list[str]]:
        with self._lock:
            return [c for c in self.calls if "-c" in c]

    @property
    def link_calls(self) -> list[list[str]]:
        with self._lock:
            return [c for c in self.calls if "-c" not in c and "--macro" not in c]

    @property
    def binder_calls(self) -> list[list[str]]:
        with self._lock:
            return [c for c in self.calls if "--macro" in c]

    def _bind(self, cmd: list[str], cwd: Path) -> ProcessOutput:
        if self.binder_returncode == 0 and self.binder_writes:
            binding_file = self.binding_file or cwd / "khabind" / f"{cwd.name}.cpp"
            write_file(binding_file, "// generated glue\n", age=BINDING_AGE)
        stderr = "Binder failed\n" if self.binder_returncode else ""
        return ProcessOutput(tuple(cmd), self.binder_returncode, "", stderr)

    def _compile(self, cmd: list[str]) -> ProcessOutput:
        source = Path(value_after(cmd, "-c")).name
        with self._lock:
            self.compiled.append(source)
        delay = self.delays.get(source, 0.0)
        if delay:
            time.sleep(delay)

        stderr = self.compile_stderr.get(source, "")
        returncode = self.compile_returncode.get(source, 0)
        if not stderr and returncode == 0:
            obj = Path(value_after(cmd, "-o"))
            obj.parent.mkdir(parents=True, exist_ok=True)
            obj.write_text("bitcode")
        return ProcessOutput(tuple(cmd), returncode, "", stderr)

    def _link(self, cmd: list[str]) -> ProcessOutput:
        if self.link_returncode == 0:
            artifact = Path(value_after(cmd, "-o"))
            artifact.parent.mkdir(parents=True, exist_ok=True)
            artifact.write_text("var box2d = function() {};\n")
        return ProcessOutput(tuple(cmd), self.link_returncode, "", self.link_stderr)


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """A library root with three native sources and no generated output."""
    return make_library(tmp_path)


@pytest.fixture
def target(library: Path) -> BuildTarget:
    return make_target(library)


@pytest.fixture
def fake_toolchain(target: BuildTarget) -> FakeToolchain:
    return FakeToolchain(binding_file=target.binding_file)


@pytest.fixture
def emscripten_env() -> dict[str, str]:
    return {"EMSCRIPTEN": EMSDK}
