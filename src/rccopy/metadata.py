"""Copy permissions and timestamps from a source file onto its copy."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from .exceptions import CopyError

logger = logging.getLogger(__name__)


def creation_time(stat_result: os.stat_result) -> float | None:
    """
    Return the creation (birth) time of a file, if the platform reports one.

    Parameters
    ----------
    stat_result : os.stat_result
        Result of ``os.stat`` for the file

    Returns
    -------
    float | None
        Creation time as a POSIX timestamp, or None when unavailable
    """
    return getattr(stat_result, "st_birthtime", None)


def _apply_creation_time(path: Path, birthtime: float) -> bool:
    """
    Set the creation time of ``path``.

    Only macOS exposes a way to do this (``SetFile -d``). Returns False when
    the creation time could not be applied.
    """
    if platform.system() != "Darwin":
        return False
    setfile = shutil.which("SetFile")
    if not setfile:
        return False
    dt = datetime.fromtimestamp(birthtime, tz=timezone.utc).astimezone()
    formatted = dt.strftime("%m/%d/%Y %H:%M:%S")
    try:
        proc = subprocess.run(
            [setfile, "-d", formatted, str(path)], capture_output=True
        )
    except OSError as e:
        logger.debug(f"SetFile failed for {path}: {e}")
        return False
    return proc.returncode == 0


def preserve_metadata(
    source: Path,
    destination: Path,
    require_creation_time: bool = False,
) -> None:
    """
    Copy permission bits and access/modification/creation times.

    Parameters
    ----------
    source : Path
        File to take the metadata from
    destination : Path
        File to apply the metadata to
    require_creation_time : bool, default=False
        Treat a missing or unsettable creation time as an error instead of
        logging a warning

    Raises
    ------
    CopyError
        If permissions or timestamps cannot be read or applied
    """
    try:
        st = os.stat(source)
        shutil.copymode(source, destination)
        os.utime(destination, ns=(st.st_atime_ns, st.st_mtime_ns))
    except OSError as e:
        raise CopyError(source, destination, f"could not preserve metadata: {e}") from e

    birthtime = creation_time(st)
    if birthtime is not None and _apply_creation_time(destination, birthtime):
        return

    if require_creation_time:
        raise CopyError(source, destination, "creation time could not be preserved")
    logger.warning(f"Creation time not preserved for {destination}")
