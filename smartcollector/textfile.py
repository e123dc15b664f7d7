"""Textfile collector output module.

This module handles:
- Writing metric lines to the node exporter textfile directory
- Replacing the previous file atomically (temp file + rename)
- Printing lines to stdout instead when running in dry-run mode

The node exporter only reads files ending in ".prom", so the temporary
file is named "<name>.<random>.tmp" in the same directory and is never
picked up half-written.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Iterable, Optional, TextIO, Union

# Configure module logger
logger = logging.getLogger(__name__)

TEXTFILE_NAME = "smartcollector.prom"

# The collector usually runs as a different user than the node exporter
TEXTFILE_MODE = 0o644


class TextfileError(Exception):
    """Exception raised when the textfile can't be written."""
    pass


def save_time_series(path: Union[str, Path], lines: Iterable[str]) -> None:
    """Atomically replace path with the given lines.

    Each line is written followed by a newline. The data goes to a
    uniquely named temporary file next to path, which is flushed, synced
    and closed before being renamed over path. If anything fails the
    temporary file is removed and path is left as it was.

    Args:
        path: Destination file
        lines: Metric lines, written in order

    Raises:
        TextfileError: If creating, writing, closing or renaming fails
    """
    path = Path(path)
    tmp_name = None
    renamed = False

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{path.name}.", suffix=".tmp", dir=path.parent
        )
        logger.debug(f"Writing time series to {tmp_name}")

        # Leaving the with block closes the file; a close error aborts the rename.
        # Device names may carry lone surrogates, which plain utf-8 can't encode.
        with os.fdopen(fd, "w", encoding="utf-8", errors="backslashreplace") as f:
            for line in lines:
                f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

        os.chmod(tmp_name, TEXTFILE_MODE)
        os.replace(tmp_name, path)
        renamed = True

    except (OSError, UnicodeError) as e:
        raise TextfileError(f"Unable to write {path}: {e}") from e

    finally:
        if tmp_name is not None and not renamed:
            _remove_quietly(tmp_name)

    logger.info(f"Saved time series to {path}")


def _remove_quietly(name: str) -> None:
    try:
        os.unlink(name)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {name}: {e}")


def print_time_series(lines: Iterable[str], stream: Optional[TextIO] = None) -> None:
    """Print lines one per line, for dry-run mode."""
    stream = stream if stream is not None else sys.stdout
    for line in lines:
        print(line, file=stream)


def write_output(
    lines: Iterable[str],
    textfile_dir: Union[str, Path],
    dry_run: bool = False,
) -> Optional[Path]:
    """Save lines into textfile_dir, or print them if dry_run is set.

    Returns:
        The path written, or None in dry-run mode
    """
    if dry_run:
        print_time_series(lines)
        return None

    path = Path(textfile_dir) / TEXTFILE_NAME
    save_time_series(path, lines)
    return path
