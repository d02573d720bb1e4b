"""Unit tests for the CompilationScheduler.

Tests cover:
- Only stale sources are compiled; artifacts list every source in order
- Forced full rebuild compiles everything
- The toolchain is resolved lazily, once, and only if something is stale
- Any stderr output fails a unit, even with exit code 0
- Fail-fast: in-flight siblings finish, unstarted units are cancelled
- Duplicate object paths are rejected
- Progress callbacks
"""

import threading
from pathlib import Path

import pytest
from conftest import EMSDK, FakeToolchain, make_library, make_target, write_file

from idlbind.build.compiler import CompilationScheduler, CompileError, check_unique_objects
from idlbind.build.models import BuildTarget, CompileStatus, SourceRecord
from idlbind.build.source_scanner import discover
from idlbind.build.toolchain import ToolchainNotFoundError, ToolchainResolver
from idlbind.output import capture_output

# ─── Helpers ──────────────────────────────────────────────────────────────────


class RecordingCallback:
    """Callback that records all on_compile calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, CompileStatus, str]] = []
        self._lock = threading.Lock()

    def on_compile(self, source: str, status: CompileStatus, detail: str) -> None:
        with self._lock:
            self.calls.append((source, status, detail))

    def statuses_for(self, source: str) -> list[CompileStatus]:
        with self._lock:
            return [c[1] for c in self.calls if c[0] == source]


def make_scheduler(target: BuildTarget, runner: FakeToolchain, resolver=None, **kwargs) -> CompilationScheduler:
    resolver = resolver if resolver is not None else ToolchainResolver(environ={"EMSCRIPTEN": EMSDK})
    return CompilationScheduler(target, resolver, runner=runner, **kwargs)


def build_objects(sources, age: float = 10) -> None:
    """Create an up-to-date object artifact for every source."""
    for source in sources:
        write_file(source.object_path, "bitcode", age=age)


# ─── Staleness and compilation ────────────────────────────────────────────────


class TestCompileAll:
    def test_first_build_compiles_everything(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        sources = discover(target)
        result = make_scheduler(target, fake_toolchain, concurrency=2).compile_all(sources)

        assert result.any_changed
        assert result.compiled_count == 3
        assert sorted(fake_toolchain.compiled) == ["b2Body.cpp", "b2Math.cpp", "b2Settings.c"]
        assert result.artifacts == tuple(s.object_path for s in sources)
        assert all(p.exists() for p in result.artifacts)

    def test_one_missing_object_compiles_only_that_source(self, tmp_path: Path) -> None:
        root = make_library(tmp_path, sources=("sources/a.cpp", "sources/b.cpp"))
        target = make_target(root)
        sources = discover(target)
        build_objects(sources[1:])
        runner = FakeToolchain()

        result = make_scheduler(target, runner).compile_all(sources)

        assert runner.compiled == ["a.cpp"]
        assert result.any_changed
        assert [o.status for o in result.outcomes] == [CompileStatus.COMPILED, CompileStatus.SKIPPED]
        # Skipped sources still contribute their artifact, in discovery order
        assert result.artifacts == (sources[0].object_path, sources[1].object_path)

    def test_source_newer_than_object_is_recompiled(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        sources = discover(target)
        build_objects(sources, age=2000)

        make_scheduler(target, fake_toolchain).compile_all(sources)

        assert sorted(fake_toolchain.compiled) == ["b2Body.cpp", "b2Math.cpp", "b2Settings.c"]

    def test_nothing_stale(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        sources = discover(target)
        build_objects(sources)

        result = make_scheduler(target, fake_toolchain).compile_all(sources)

        assert not result.any_changed
        assert result.skipped_count == 3
        assert fake_toolchain.calls == []
        assert len(result.artifacts) == 3

    def test_force_compiles_up_to_date_sources(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        sources = discover(target)
        build_objects(sources)

        result = make_scheduler(target, fake_toolchain).compile_all(sources, force=True)

        assert result.compiled_count == 3
        assert len(fake_toolchain.compile_calls) == 3

    def test_empty_source_list(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        result = make_scheduler(target, fake_toolchain).compile_all(())
        assert result.artifacts == ()
        assert not result.any_changed


# ─── Toolchain resolution ─────────────────────────────────────────────────────


class TestToolchainUse:
    def test_not_resolved_when_nothing_stale(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        sources = discover(target)
        build_objects(sources)
        resolver = ToolchainResolver(environ={})

        # No EMSCRIPTEN, but nothing needs compiling
        result = make_scheduler(target, fake_toolchain, resolver=resolver).compile_all(sources)

        assert not result.any_changed
        assert not resolver.is_resolved

    def test_missing_toolchain_is_fatal_when_needed(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        resolver = ToolchainResolver(environ={})
        with pytest.raises(ToolchainNotFoundError):
            make_scheduler(target, fake_toolchain, resolver=resolver).compile_all(discover(target))
        assert fake_toolchain.calls == []

    def test_resolved_once_for_many_sources(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        resolver = ToolchainResolver(environ={"EMSCRIPTEN": EMSDK})
        make_scheduler(target, fake_toolchain, resolver=resolver, concurrency=3).compile_all(discover(target))
        assert resolver.resolve_count == 1

    def test_compile_command(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        source = discover(target)[0]
        make_scheduler(target, fake_toolchain).compile_all([source])

        (cmd,) = fake_toolchain.compile_calls
        assert Path(cmd[0]).name in ("emcc", "emcc.bat")
        assert cmd[1] == "-O2"
        assert f"-I{target.sources_dir}" in cmd
        assert f"-I{target.root_dir / 'sources' / 'Common'}" in cmd
        assert cmd[-4:] == ["-c", str(source.path), "-o", str(source.object_path)]
        assert fake_toolchain.cwds == [target.root_dir]


# ─── Concurrency and failures ─────────────────────────────────────────────────


class TestConcurrencyAndFailures:
    @pytest.mark.parametrize("limit", [1, 2])
    def test_concurrency_limit(self, tmp_path: Path, limit: int) -> None:
        names = [f"sources/s{i}.cpp" for i in range(6)]
        target = make_target(make_library(tmp_path, sources=names))
        runner = FakeToolchain(delays={f"s{i}.cpp": 0.05 for i in range(6)})

        make_scheduler(target, runner, concurrency=limit).compile_all(discover(target))

        assert runner.high_water <= limit
        assert len(runner.compiled) == 6

    def test_stderr_with_exit_zero_fails(self, target: BuildTarget) -> None:
        runner = FakeToolchain(compile_stderr={"b2Math.cpp": "b2Math.cpp:3: error: expected ';'\n"})
        sources = discover(target)

        with pytest.raises(CompileError) as exc_info:
            make_scheduler(target, runner, concurrency=1).compile_all(sources)

        error = exc_info.value
        assert str(error) == "b2Math.cpp:3: error: expected ';'\n"
        assert error.source.path.name == "b2Math.cpp"
        statuses = {o.source.path.name: o.status for o in error.outcomes}
        assert statuses["b2Math.cpp"] == CompileStatus.FAILED
        assert not error.source.object_path.exists()

    def test_nonzero_exit_without_stderr_fails(self, target: BuildTarget) -> None:
        runner = FakeToolchain(compile_returncode={"b2Body.cpp": 1})
        with pytest.raises(CompileError, match="exited with code 1"):
            make_scheduler(target, runner, concurrency=1).compile_all(discover(target))

    def test_fail_fast_siblings_finish_rest_cancelled(self, tmp_path: Path) -> None:
        names = ("sources/a_slow.cpp", "sources/b_bad.cpp", "sources/c.cpp", "sources/d.cpp")
        target = make_target(make_library(tmp_path, sources=names))
        runner = FakeToolchain(
            compile_stderr={"b_bad.cpp": "fatal error: missing.h: No such file\n"},
            delays={"a_slow.cpp": 0.3},
        )
        callback = RecordingCallback()

        with pytest.raises(CompileError) as exc_info:
            make_scheduler(target, runner, concurrency=2, callback=callback).compile_all(discover(target))

        statuses = {o.source.path.name: o.status for o in exc_info.value.outcomes}
        assert statuses["a_slow.cpp"] == CompileStatus.COMPILED
        assert statuses["b_bad.cpp"] == CompileStatus.FAILED
        assert statuses["c.cpp"] == CompileStatus.CANCELLED
        assert statuses["d.cpp"] == CompileStatus.CANCELLED
        assert sorted(runner.compiled) == ["a_slow.cpp", "b_bad.cpp"]
        # The in-flight sibling still produced its object
        assert (target.object_dir / "sources" / "a_slow.bc").exists()
        assert callback.statuses_for("sources/c.cpp")[-1] == CompileStatus.CANCELLED
        assert "missing.h" in str(exc_info.value)

    def test_without_fail_fast_all_units_run(self, tmp_path: Path) -> None:
        names = ("sources/a.cpp", "sources/b.cpp", "sources/c.cpp")
        target = make_target(make_library(tmp_path, sources=names))
        runner = FakeToolchain(compile_stderr={"a.cpp": "error\n"})

        with pytest.raises(CompileError):
            make_scheduler(target, runner, concurrency=1, fail_fast=False).compile_all(discover(target))

        assert sorted(runner.compiled) == ["a.cpp", "b.cpp", "c.cpp"]

    def test_runner_oserror_fails_unit(self, target: BuildTarget) -> None:
        def runner(cmd, cwd):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        with pytest.raises(CompileError, match="Failed to run"):
            make_scheduler(target, runner, concurrency=1).compile_all(discover(target))


# ─── Duplicate object paths ───────────────────────────────────────────────────


class TestUniqueObjects:
    def test_duplicate_object_paths_rejected(self, tmp_path: Path) -> None:
        target = make_target(make_library(tmp_path, sources=("sources/foo.c", "sources/foo.cpp")))
        sources = discover(target)

        with pytest.raises(ValueError, match="both compile to"):
            check_unique_objects(sources)
        with pytest.raises(ValueError):
            make_scheduler(target, FakeToolchain()).compile_all(sources)

    def test_unique_paths_accepted(self, tmp_path: Path) -> None:
        a = SourceRecord(tmp_path / "a.cpp", Path("a.cpp"), tmp_path / "a.bc")
        b = SourceRecord(tmp_path / "sub" / "a.cpp", Path("sub/a.cpp"), tmp_path / "sub" / "a.bc")
        check_unique_objects([a, b])


# ─── Callbacks and logging ────────────────────────────────────────────────────


class TestProgressReporting:
    def test_callback_transitions(self, tmp_path: Path) -> None:
        target = make_target(make_library(tmp_path, sources=("sources/a.cpp", "sources/b.cpp")))
        sources = discover(target)
        build_objects(sources[1:])
        callback = RecordingCallback()

        make_scheduler(target, FakeToolchain(), callback=callback).compile_all(sources)

        assert callback.statuses_for("sources/a.cpp") == [
            CompileStatus.PENDING,
            CompileStatus.RUNNING,
            CompileStatus.COMPILED,
        ]
        assert callback.statuses_for("sources/b.cpp") == [CompileStatus.SKIPPED]

    def test_compile_lines_logged(self, target: BuildTarget, fake_toolchain: FakeToolchain) -> None:
        with capture_output() as captured:
            make_scheduler(target, fake_toolchain, concurrency=1).compile_all(discover(target))

        text = captured.getvalue()
        assert "Compiling sources/b2Body.cpp" in text
        assert "Compiling sources/Common/b2Math.cpp" in text
