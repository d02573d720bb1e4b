"""
Project configuration for native binding libraries.

Each library root holds an idlbind.ini file:

    [binding]
    idl_file = box2d.idl
    native_lib = box2d
    sources_dir = sources
    includes = sources/Box2D, third_party
    optimization_level = 3
    extra_args = -s TOTAL_MEMORY=33554432

The modification time of this file drives full rebuilds: any change to it
invalidates every generated binding and object artifact of the library.
"""

import configparser
import multiprocessing
import re
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from idlbind.errors import IdlBindError

CONFIG_FILE_NAME = "idlbind.ini"
SECTION = "binding"
JAVASCRIPT_PLATFORMS = ("krom",)
NATIVE_HL_PLATFORM = "hl"


class ConfigError(IdlBindError):
    """Raised when a project configuration is missing or malformed."""

    pass


@dataclass(frozen=True)
class BindConfig:
    """Parsed [binding] section of idlbind.ini.

    Attributes:
        config_file: Path of the ini file itself
        idl_file: Interface-description file, relative to the library root
        native_lib: Name of the native library (artifact and export name)
        sources_dir: Native source directory, relative to the library root
        chop_prefix: Prefix stripped from native names by the binder
        auto_gc: Whether generated wrappers are garbage collected
        includes: Extra include directories, relative to the library root
        optimization_level: Optimization level (-O<level>)
        extra_args: Extra linker argument entries, one per line in the ini file
    """

    config_file: Path
    idl_file: str
    native_lib: str
    sources_dir: str = "sources"
    chop_prefix: str = ""
    auto_gc: bool = True
    includes: tuple[str, ...] = ()
    optimization_level: str = "2"
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildOptions:
    """Options for one pipeline invocation.

    Attributes:
        platform: Target platform name (e.g. "html5", "krom", "hl")
        kha: Kha framework root holding the WebIDL binder
        haxe: Haxe compiler executable
        jobs: Concurrency limit for compilation (None = CPU count)
        fail_fast: Stop starting compiles after the first failure
        verbose: Log cached sources and other detail lines
        use_tui: Rich progress display; None = auto-detect TTY
    """

    platform: str
    kha: Path
    haxe: str = "haxe"
    jobs: Optional[int] = None
    fail_fast: bool = True
    verbose: bool = False
    use_tui: Optional[bool] = None

    @property
    def concurrency(self) -> int:
        return self.jobs if self.jobs is not None else multiprocessing.cpu_count()

    @property
    def compiles_to_javascript(self) -> bool:
        """Krom and HTML5 targets consume the library as compiled JavaScript."""
        return self.platform in JAVASCRIPT_PLATFORMS or self.platform.endswith("html5")

    @property
    def native_hl(self) -> bool:
        return self.platform == NATIVE_HL_PLATFORM

    @property
    def supports_bindings(self) -> bool:
        return self.compiles_to_javascript or self.native_hl


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item for item in re.split(r"[,\s]+", value.strip()) if item)


def parse_bind_config(config_file: Path, text: str) -> BindConfig:
    """Parse idlbind.ini contents.

    Args:
        config_file: Path the text was read from (recorded in the result)
        text: INI file contents

    Returns:
        BindConfig

    Raises:
        ConfigError: If the [binding] section or a required key is missing,
            or a value is invalid
    """
    parser = configparser.ConfigParser()
    try:
        parser.read_string(text, source=str(config_file))
    except configparser.Error as e:
        raise ConfigError(f"Failed to parse {config_file}: {e}") from e

    if not parser.has_section(SECTION):
        raise ConfigError(f"{config_file}: missing [{SECTION}] section")
    section = parser[SECTION]

    for key in ("idl_file", "native_lib"):
        if not section.get(key, "").strip():
            raise ConfigError(f"{config_file}: [{SECTION}] requires '{key}'")

    try:
        auto_gc = section.getboolean("auto_gc", fallback=True)
    except ValueError as e:
        raise ConfigError(f"{config_file}: invalid auto_gc: {e}") from e

    optimization_level = section.get("optimization_level", "2").strip()
    if optimization_level.startswith("-O"):
        optimization_level = optimization_level[2:]
    if not re.fullmatch(r"[0-3sz]|fast", optimization_level):
        raise ConfigError(f"{config_file}: invalid optimization_level '{optimization_level}'")

    # One entry per line; entries are shell-split by the link stage
    extra_args = tuple(line.strip() for line in section.get("extra_args", "").splitlines() if line.strip())
    for entry in extra_args:
        try:
            shlex.split(entry)
        except ValueError as e:
            raise ConfigError(f"{config_file}: invalid extra_args entry {entry!r}: {e}") from e

    return BindConfig(
        config_file=config_file,
        idl_file=section["idl_file"].strip(),
        native_lib=section["native_lib"].strip(),
        sources_dir=section.get("sources_dir", "sources").strip() or "sources",
        chop_prefix=section.get("chop_prefix", "").strip(),
        auto_gc=auto_gc,
        includes=_split_list(section.get("includes", "")),
        optimization_level=optimization_level,
        extra_args=extra_args,
    )


def load_bind_config(lib_root: Path) -> BindConfig:
    """Load <lib_root>/idlbind.ini.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config_file = Path(lib_root).resolve() / CONFIG_FILE_NAME
    if not config_file.is_file():
        raise ConfigError(f"Project configuration not found: {config_file}")
    try:
        text = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_file}: {e}") from e
    return parse_bind_config(config_file, text)


def is_tty() -> bool:
    """Check if stdout is a terminal (TTY)."""
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False
