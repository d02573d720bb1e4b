"""Filesystem timestamp queries used by every staleness decision.

A path that cannot be stat'ed (missing, or below a non-directory) never
raises here, it simply has no mtime.
"""

import os
from pathlib import Path
from typing import Optional


def exists(path: Path) -> bool:
    return os.path.exists(path)


def is_dir(path: Path) -> bool:
    return os.path.isdir(path)


def mtime(path: Path) -> Optional[float]:
    """Get the modification time of a path.

    Args:
        path: File or directory path

    Returns:
        Modification time in seconds since the epoch, or None if the path
        cannot be stat'ed
    """
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


def is_newer(path: Path, reference: Path) -> bool:
    """Check whether path was modified strictly after reference.

    Args:
        path: Candidate input file
        reference: Derived artifact it is compared against

    Returns:
        False if either path is missing, otherwise mtime(path) > mtime(reference)
    """
    path_mtime = mtime(path)
    reference_mtime = mtime(reference)
    if path_mtime is None or reference_mtime is None:
        return False
    return path_mtime > reference_mtime


def is_up_to_date(artifact: Path, source: Path) -> bool:
    """Check whether a derived artifact exists and is strictly newer than its source.

    Args:
        artifact: Derived artifact (e.g. an object file)
        source: Input the artifact was produced from

    Returns:
        True if the artifact exists and mtime(artifact) > mtime(source)
    """
    artifact_mtime = mtime(artifact)
    if artifact_mtime is None:
        return False
    source_mtime = mtime(source)
    if source_mtime is None:
        return True
    return artifact_mtime > source_mtime
