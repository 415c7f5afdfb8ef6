"""
rccopy: Verified directory copies with MediaHashList output.

This package copies a directory tree to a destination, verifies every file
with a checksum (md5, sha1 or xxhash64) and optionally writes an MHL file
describing the copied files, for DIT and media production workflows.
"""

__version__ = "1.0.0"
__description__ = "Verified directory copies with MediaHashList output"

from .config import RunConfig
from .copier import CopyEvent, CopyResult, EventType, FileCopier, copy_file
from .engine import CopyJob, FileOutcome, FileState, RunStatus, RunSummary
from .exceptions import (
    ConfigurationError,
    CopyError,
    ManifestError,
    ManifestWriteError,
    PathError,
    RccopyError,
    VerificationMismatch,
)
from .hashing import Algorithm, HashCalculator
from .main import main
from .manifest import (
    CreatorInfo,
    FileRecord,
    RunManifest,
    read_manifest,
    verify_manifest,
    write_manifest,
)
from .verifier import checksum, verify_copy, verify_existing
from .walker import list_empty_dirs, list_files

__all__ = [
    "Algorithm",
    "ConfigurationError",
    "CopyError",
    "CopyEvent",
    "CopyJob",
    "CopyResult",
    "CreatorInfo",
    "EventType",
    "FileCopier",
    "FileOutcome",
    "FileRecord",
    "FileState",
    "HashCalculator",
    "ManifestError",
    "ManifestWriteError",
    "PathError",
    "RccopyError",
    "RunConfig",
    "RunManifest",
    "RunStatus",
    "RunSummary",
    "VerificationMismatch",
    "checksum",
    "copy_file",
    "list_empty_dirs",
    "list_files",
    "main",
    "read_manifest",
    "verify_copy",
    "verify_existing",
    "verify_manifest",
    "write_manifest",
]
