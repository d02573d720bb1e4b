"""
Centralized build log for idlbind.

Every line is prefixed with the elapsed time since the timer was started,
in MM:SS.cc format (minutes:seconds.centiseconds), so a build log shows where
time went:

    00:00.02 Generating bindings for: box2d
    00:00.41     Compiling sources/Box2D/Common/b2Math.cpp
    00:03.87     Linking Javascript Library
    00:05.10 Done generating bindings for: box2d

Usage:
    from idlbind.output import log, log_detail, log_error, capture_output

    log("Generating bindings for: box2d")
    log_detail("Compiling sources/foo.cpp", indent=4)

    with capture_output() as captured:
        log("hello")
    captured.getvalue()  # "00:00.00 hello\\n"
"""

import io
import sys
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

# Global state for the timer
_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = True
_output_file: Optional[TextIO] = None
_captures: list[io.StringIO] = []
_write_lock = threading.Lock()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    If not called explicitly, it is called automatically on first log.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout as
            bound at each write)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def reset_timer() -> None:
    """Reset the timer to the current time."""
    global _start_time
    _start_time = time.time()


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode for logging.

    Args:
        verbose: If True, all messages are printed. If False, only non-verbose messages.
    """
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def set_output_file(output_file: Optional[TextIO]) -> None:
    """
    Set a file to receive all log output (in addition to the output stream).

    Args:
        output_file: File object to receive output, or None to disable file output
    """
    global _output_file
    _output_file = output_file


def get_output_file() -> Optional[TextIO]:
    return _output_file


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    """
    Internal print function with timestamp.

    Compile workers log from several threads, so whole lines are written
    under a lock.

    Args:
        message: Message to print
        end: End character (default newline)
    """
    timestamp = format_timestamp()
    line = f"{timestamp} {message}{end}"
    with _write_lock:
        stream = _output_stream if _output_stream is not None else sys.stdout
        stream.write(line)
        stream.flush()

        if _output_file is not None:
            _output_file.write(line)
            _output_file.flush()

        for capture in _captures:
            capture.write(line)


@contextmanager
def capture_output() -> Iterator[io.StringIO]:
    """
    Collect every log line written while the context is active.

    Lines still go to the output stream and output file. Captures nest.

    Yields:
        StringIO receiving the captured lines
    """
    buffer = io.StringIO()
    with _write_lock:
        _captures.append(buffer)
    try:
        yield buffer
    finally:
        with _write_lock:
            _captures.remove(buffer)


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 4, verbose_only: bool = False) -> None:
    """
    Log a detail message (indented).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 4)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_file(action: str, filename: str, cached: bool = False, verbose_only: bool = True) -> None:
    """
    Log a per-source message.

    Format: <action> filename (cached)

    Args:
        action: Verb describing what happens to the file (e.g. 'Compiling')
        filename: Name of the file, relative to the library root
        cached: If True, append "(cached)" to message
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    suffix = " (cached)" if cached else ""
    _print(f"    {action} {filename}{suffix}")


def log_build_complete(build_time: float, verbose_only: bool = False) -> None:
    """
    Log build completion message.

    Args:
        build_time: Total build time in seconds
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"Build time: {build_time:.2f}s")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _print(f"WARNING: {message}")
