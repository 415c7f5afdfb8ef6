"""Exception types raised by rccopy.

Convention:
- ``ConfigurationError`` and ``PathError`` are fatal and raised before any
  file is processed.
- ``CopyError`` and ``VerificationMismatch`` are per-file. The orchestrator
  catches them, records the failed source path and moves on to the next file.
- ``ManifestWriteError`` is raised after all copying is done. The orchestrator
  keeps it in the run summary and the run fails.
"""

from __future__ import annotations

from pathlib import Path


class RccopyError(Exception):
    """Base class for all rccopy errors."""


class ConfigurationError(RccopyError, ValueError):
    """Raised for invalid run configuration (e.g. an unknown hash algorithm)."""


class PathError(RccopyError):
    """Raised when the source or destination root cannot be used."""


class CopyError(RccopyError):
    """
    Raised when a single file could not be copied.

    Parameters
    ----------
    source : Path
        Source file path
    destination : Path
        Destination file path
    reason : str
        Human readable description of what went wrong
    """

    def __init__(self, source: Path, destination: Path, reason: str):
        super().__init__(f"Could not copy {source} to {destination}: {reason}")
        self.source = source
        self.destination = destination
        self.reason = reason


class VerificationMismatch(RccopyError):
    """
    Raised when a checksum could not be confirmed.

    Covers both differing digests and a checksum computation that failed.

    Parameters
    ----------
    path : Path
        File whose checksum did not match
    expected : str | None
        Digest the file should have had
    actual : str | None
        Digest that was computed, or None if hashing itself failed
    reason : str, default=""
        Optional explanation, used when hashing failed
    """

    def __init__(
        self,
        path: Path,
        expected: str | None,
        actual: str | None,
        reason: str = "",
    ):
        if reason:
            message = f"Checksum verification failed for {path}: {reason}"
        else:
            message = f"Checksum mismatch for {path}: {actual} != {expected}"
        super().__init__(message)
        self.path = path
        self.expected = expected
        self.actual = actual


class ManifestError(RccopyError):
    """Raised when a manifest file cannot be parsed."""


class ManifestWriteError(ManifestError):
    """Raised when the manifest could not be written to disk."""
