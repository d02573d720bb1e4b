"""Source file discovery.

Recursively walks source roots and collects compilable C/C++ files, mapping
each one to its object artifact under <buildroot>/bytecode/ with the same
root-relative path and a .bc extension.

Output order is stable for a fixed filesystem state: directory entries are
visited in sorted order, depth first, so the same tree always yields the
same sequence.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from . import timestamps
from .models import OBJECT_SUFFIX, BuildTarget, SourceRecord

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS: tuple[str, ...] = (".c", ".cpp")


class SourceScanner:
    """Discovers compilable sources below a library root.

    Args:
        root_dir: Library root; relative paths are computed against it
        object_dir: Directory receiving object artifacts
        extensions: File extensions considered compilable
    """

    def __init__(self, root_dir: Path, object_dir: Path, extensions: Sequence[str] = SOURCE_EXTENSIONS) -> None:
        self.root_dir = Path(root_dir)
        self.object_dir = Path(object_dir)
        self.extensions = tuple(extensions)

    def scan(self, roots: Iterable[Path]) -> tuple[SourceRecord, ...]:
        """Collect every compilable source below the given roots.

        Non-existent and non-directory roots are skipped silently; optional
        extra roots are expected to be missing sometimes.

        Args:
            roots: Directories to walk, in order

        Returns:
            Immutable sequence of SourceRecords in discovery order
        """
        records: list[SourceRecord] = []
        for root in roots:
            root = Path(root)
            if not timestamps.is_dir(root):
                logger.debug("Skipping missing source root: %s", root)
                continue
            records.extend(self._make_record(path) for path in self._walk(root))
        logger.debug("Discovered %d sources", len(records))
        return tuple(records)

    def _walk(self, directory: Path) -> list[Path]:
        """Depth-first walk returning matching files in sorted entry order.

        Symlinked directories are followed, but each real directory is
        listed only once, so symlink cycles terminate.
        """
        found: list[Path] = []
        visited: set[str] = set()
        stack = [directory]
        while stack:
            current = stack.pop()
            real = os.path.realpath(current)
            if real in visited:
                logger.debug("Skipping already visited directory: %s", current)
                continue
            visited.add(real)
            try:
                entries = sorted(os.scandir(current), key=lambda e: e.name)
            except OSError as e:
                logger.debug("Cannot list %s: %s", current, e)
                continue
            subdirs: list[Path] = []
            for entry in entries:
                if entry.is_dir():
                    subdirs.append(Path(entry.path))
                elif entry.name.endswith(self.extensions):
                    found.append(Path(entry.path))
            # Files of a directory come before its subdirectories
            stack.extend(reversed(subdirs))
        return found

    def _make_record(self, path: Path) -> SourceRecord:
        relative = Path(os.path.relpath(path, self.root_dir))
        object_path = self.object_dir / relative.with_suffix(OBJECT_SUFFIX)
        return SourceRecord(path=path, relative_path=relative, object_path=object_path)


def discover(target: BuildTarget, extensions: Sequence[str] = SOURCE_EXTENSIONS) -> tuple[SourceRecord, ...]:
    """Discover the sources of a build target (sources dir, then binding dir)."""
    scanner = SourceScanner(target.root_dir, target.object_dir, extensions)
    return scanner.scan(target.source_roots)
