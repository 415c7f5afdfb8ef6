"""Run configuration."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from .exceptions import ConfigurationError, PathError
from .hashing import CHUNK_SIZE, Algorithm


@dataclass
class RunConfig:
    """
    Configuration for one copy run.

    Attributes
    ----------
    source_root : Path
        Directory to copy
    destination_root : Path
        Directory to copy into
    algorithm : Algorithm | None, default=None
        Checksum algorithm; None copies without verification. A string is
        parsed with ``Algorithm.parse``.
    write_manifest : bool, default=False
        Write an MHL file into ``destination_root``
    preview : bool, default=False
        Only report what would be done
    chunk_size : int, default=CHUNK_SIZE
        Bytes per read/write
    require_creation_time : bool, default=False
        Fail a file if its creation time cannot be preserved
    verbose : bool, default=False
        Enable debug logging
    """

    source_root: Path
    destination_root: Path
    algorithm: Algorithm | None = None
    write_manifest: bool = False
    preview: bool = False
    chunk_size: int = CHUNK_SIZE
    require_creation_time: bool = False
    verbose: bool = False

    def __post_init__(self):
        """Validate configuration."""
        self.source_root = Path(self.source_root)
        self.destination_root = Path(self.destination_root)

        if isinstance(self.algorithm, str):
            self.algorithm = Algorithm.parse(self.algorithm)

        if self.chunk_size <= 0:
            raise ConfigurationError(
                f"Chunk size must be positive, got {self.chunk_size}"
            )

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunConfig":
        """Create config from command-line arguments."""
        return cls(
            source_root=args.input,
            destination_root=args.destination,
            algorithm=args.checksum,
            write_manifest=args.mhl,
            preview=args.dry_run,
            require_creation_time=args.require_creation_time,
            verbose=args.verbose,
        )

    def validate_paths(self) -> None:
        """
        Check that source and destination roots can be used.

        Raises
        ------
        PathError
            If either root is missing or not a directory, if both are the
            same directory, or if the destination lies inside the source
        """
        for label, path in (
            ("Input", self.source_root),
            ("Destination", self.destination_root),
        ):
            if not path.exists():
                raise PathError(f"{label} directory does not exist: {path}")
            if not path.is_dir():
                raise PathError(f"{label} is not a directory: {path}")

        source = self.source_root.resolve()
        destination = self.destination_root.resolve()
        if source == destination:
            raise PathError("Input and destination directories are the same")
        if source in destination.parents:
            raise PathError(
                f"Destination {destination} is inside the input directory {source}"
            )
