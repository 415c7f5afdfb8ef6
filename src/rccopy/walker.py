"""Directory enumeration for the copy source."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

# Filesystem bookkeeping files that are never copied
EXCLUDED_NAMES = frozenset(
    {
        ".DS_Store",
        ".Spotlight-V100",
        ".Trashes",
        ".fseventsd",
        ".TemporaryItems",
        "Thumbs.db",
        "desktop.ini",
    }
)
# AppleDouble resource fork files created by macOS on non-HFS volumes
EXCLUDED_PREFIXES = ("._",)

WalkErrorHandler = Callable[[Path, OSError], None]


def is_excluded(name: str) -> bool:
    """Return True if ``name`` is an OS artifact that should not be copied."""
    return name in EXCLUDED_NAMES or name.startswith(EXCLUDED_PREFIXES)


def _entries(directory: Path) -> list[Path]:
    return sorted(
        (entry for entry in directory.iterdir() if not is_excluded(entry.name)),
        key=lambda entry: entry.name,
    )


def _walk(
    directory: Path, onerror: WalkErrorHandler | None = None
) -> Iterator[tuple[Path, list[Path]]]:
    # Symlinked directories are not descended into, so every regular file is
    # reached through exactly one path.
    try:
        entries = _entries(directory)
        subdirectories = [
            entry for entry in entries if entry.is_dir() and not entry.is_symlink()
        ]
    except OSError as e:
        if onerror is None:
            raise
        onerror(directory, e)
        return

    yield directory, entries
    for entry in subdirectories:
        yield from _walk(entry, onerror)


def list_files(root: Path, onerror: WalkErrorHandler | None = None) -> list[Path]:
    """
    List every regular file beneath ``root``.

    Parameters
    ----------
    root : Path
        Directory to search
    onerror : Callable[[Path, OSError], None] | None, default=None
        Called with a directory and the error when the directory cannot be
        listed. Its contents are then left out. Without a handler the error
        propagates.

    Returns
    -------
    list[Path]
        Files in depth-first order, sorted by name within each directory.
        Symlinks to regular files are included.
    """
    return [
        entry
        for _, entries in _walk(root, onerror)
        for entry in entries
        if entry.is_file()
    ]


def list_empty_dirs(
    root: Path, onerror: WalkErrorHandler | None = None
) -> list[Path]:
    """
    List directories beneath ``root`` that have nothing to copy.

    A directory that only holds excluded artifacts counts as empty. ``root``
    itself is never returned, and neither is a directory that cannot be
    listed.

    Parameters
    ----------
    root : Path
        Directory to search
    onerror : Callable[[Path, OSError], None] | None, default=None
        Same as for ``list_files``

    Returns
    -------
    list[Path]
        Empty directories, in the same order as ``list_files``
    """
    return [
        directory
        for directory, entries in _walk(root, onerror)
        if directory != root and not entries
    ]
