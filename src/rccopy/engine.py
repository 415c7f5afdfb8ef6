"""
Copy orchestration: walk the source, decide per file, copy, verify, record.

Files are handled strictly one after another. Per-file errors are turned
into a failed ``FileOutcome`` and never stop the run.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .config import RunConfig
from .copier import CopyEvent, CopyResult, EventType, FileCopier, format_speed
from .exceptions import CopyError, ManifestWriteError, VerificationMismatch
from .manifest import (
    CreatorInfo,
    FileRecord,
    RunManifest,
    format_timestamp,
    manifest_filename,
    timestamp_from_posix,
    write_manifest,
)
from .verifier import verify_copy, verify_existing
from .walker import list_empty_dirs, list_files

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 25


# ============================================================================
# Data Models
# ============================================================================


class FileState(Enum):
    """
    Final state of one source file.

    Attributes
    ----------
    PENDING : str
        Not processed yet
    SKIPPED_VERIFIED : str
        Destination already present, both sides hashed and equal
    SKIPPED_FAILED : str
        Destination already present, but checksums differ or hashing failed
    SKIPPED_UNVERIFIED : str
        Destination already present with the same size, no algorithm to check
    COPIED_VERIFIED : str
        Copied and the destination checksum matches the source
    COPIED_FAILED : str
        Copy or post-copy verification failed
    COPIED_NO_CHECKSUM : str
        Copied without a checksum algorithm
    PLANNED_SKIP : str
        Preview only, the file would be skipped
    PLANNED_COPY : str
        Preview only, the file would be copied
    """

    PENDING = "pending"
    SKIPPED_VERIFIED = "skipped_verified"
    SKIPPED_FAILED = "skipped_failed"
    SKIPPED_UNVERIFIED = "skipped_unverified"
    COPIED_VERIFIED = "copied_verified"
    COPIED_FAILED = "copied_failed"
    COPIED_NO_CHECKSUM = "copied_no_checksum"
    PLANNED_SKIP = "planned_skip"
    PLANNED_COPY = "planned_copy"

    @property
    def failed(self) -> bool:
        return self in (FileState.SKIPPED_FAILED, FileState.COPIED_FAILED)

    @property
    def copied(self) -> bool:
        return self in (FileState.COPIED_VERIFIED, FileState.COPIED_NO_CHECKSUM)


class RunStatus(Enum):
    """Overall result of a run."""

    SUCCESS = "success"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    NOTHING_TO_COPY = "nothing_to_copy"
    DRY_RUN = "dry_run"


@dataclass
class FileOutcome:
    """
    What happened to one source file.

    Attributes
    ----------
    source : Path
        Source file path
    destination : Path
        Destination file path
    state : FileState
        Final state
    checksum : str | None, default=None
        Verified checksum, if any
    bytes_copied : int, default=0
        Bytes written to the destination
    error : str | None, default=None
        Error message for failed states
    """

    source: Path
    destination: Path
    state: FileState = FileState.PENDING
    checksum: str | None = None
    bytes_copied: int = 0
    error: str | None = None


@dataclass
class RunSummary:
    """
    Result of a whole run.

    Attributes
    ----------
    outcomes : list[FileOutcome]
        One entry per source file, in discovery order
    preview : bool
        Whether this was a dry run
    manifest : RunManifest | None, default=None
        Records collected during the run
    manifest_path : Path | None, default=None
        Written manifest file, if any
    failed_directories : list[Path], default=[]
        Source directories that could not be listed, or empty directories
        that could not be recreated
    manifest_error : str | None, default=None
        Why the requested manifest could not be written
    """

    outcomes: list[FileOutcome]
    preview: bool
    manifest: RunManifest | None = None
    manifest_path: Path | None = None
    failed_directories: list[Path] = field(default_factory=list)
    manifest_error: str | None = None

    @property
    def failed_files(self) -> list[Path]:
        """Source paths of every file or directory that failed."""
        return [o.source for o in self.outcomes if o.state.failed] + list(
            self.failed_directories
        )

    @property
    def bytes_copied(self) -> int:
        return sum(o.bytes_copied for o in self.outcomes)

    @property
    def status(self) -> RunStatus:
        if self.preview:
            return RunStatus.DRY_RUN
        if self.failed_files or self.manifest_error:
            return RunStatus.COMPLETED_WITH_ERRORS
        if not any(o.state.copied for o in self.outcomes):
            return RunStatus.NOTHING_TO_COPY
        return RunStatus.SUCCESS

    @property
    def success(self) -> bool:
        """True unless a file failed. Dry runs always succeed."""
        return self.status != RunStatus.COMPLETED_WITH_ERRORS


# ============================================================================
# Orchestrator
# ============================================================================


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CopyJob:
    """
    Copy a directory tree with optional verification and manifest.

    Parameters
    ----------
    config : RunConfig
        Validated run configuration
    creator : CreatorInfo | None, default=None
        Operator and machine identity for the manifest, defaults to
        ``CreatorInfo.current()``
    clock : Callable[[], datetime], default=UTC now
        Time source for start, finish and hash timestamps
    on_event : Callable[[CopyEvent], None] | None, default=None
        Receives copy progress events
    """

    def __init__(
        self,
        config: RunConfig,
        creator: CreatorInfo | None = None,
        clock: Callable[[], datetime] = _utc_now,
        on_event: Callable[[CopyEvent], None] | None = None,
    ):
        self.config = config
        self.creator = creator
        self.clock = clock
        self.on_event = on_event

    async def run(self) -> RunSummary:
        """
        Execute the run.

        Returns
        -------
        RunSummary
            Per-file outcomes and the written manifest path. A manifest that
            could not be written is reported in ``manifest_error`` and fails
            the run.

        Raises
        ------
        PathError
            If the source or destination root is unusable
        """
        config = self.config
        config.validate_paths()

        started_at = self.clock()
        logger.info(f"Start date: {format_timestamp(started_at)}")

        manifest = RunManifest(
            creator=self.creator or CreatorInfo.current(),
            started_at=started_at,
        )

        unreadable: list[Path] = []

        def on_walk_error(directory: Path, error: OSError) -> None:
            if directory not in unreadable:
                logger.error(f"Error: Could not read directory {directory}: {error}")
                unreadable.append(directory)

        files = list_files(config.source_root, onerror=on_walk_error)
        empty_dirs = list_empty_dirs(config.source_root, onerror=on_walk_error)
        logger.info(f"Found {len(files)} files to copy")

        outcomes = []
        for index, source_file in enumerate(files, 1):
            destination_file = config.destination_root / source_file.relative_to(
                config.source_root
            )
            logger.info(SEPARATOR)
            logger.info(f"{index} / {len(files)}: {source_file} --> {destination_file}")
            outcomes.append(
                await self._process_file(source_file, destination_file, manifest)
            )

        summary = RunSummary(
            outcomes=outcomes,
            preview=config.preview,
            manifest=manifest,
            failed_directories=unreadable,
        )
        if not config.preview:
            summary.failed_directories += self._create_empty_dirs(empty_dirs)

        if config.write_manifest and not config.preview and manifest.records:
            logger.info(SEPARATOR)
            logger.info("Writing mhl file...")
            path = config.destination_root / manifest_filename(
                config.source_root, started_at
            )
            try:
                summary.manifest_path = write_manifest(path, manifest, self.clock())
            except ManifestWriteError as e:
                logger.error(f"Error: Could not write mhl file. {e}")
                summary.manifest_error = str(e)

        return summary

    # ------------------------------------------------------------------------
    # Internal methods
    # ------------------------------------------------------------------------

    async def _process_file(
        self, source: Path, destination: Path, manifest: RunManifest
    ) -> FileOutcome:
        outcome = FileOutcome(source=source, destination=destination)
        try:
            source_stat = source.stat()
            destination_size = (
                destination.stat().st_size if destination.is_file() else None
            )
        except OSError as e:
            return self._fail(outcome, FileState.COPIED_FAILED, str(e))

        if destination_size == source_stat.st_size:
            return await self._handle_existing(outcome, source_stat, manifest)
        return await self._handle_copy(outcome, source_stat, manifest)

    async def _handle_existing(
        self,
        outcome: FileOutcome,
        source_stat: os.stat_result,
        manifest: RunManifest,
    ) -> FileOutcome:
        logger.info(
            f"File {outcome.destination} already exists and has identical file size."
        )
        algorithm = self.config.algorithm

        if self.config.preview:
            outcome.state = FileState.PLANNED_SKIP
            return outcome

        if algorithm is None:
            logger.info("Skipping...")
            outcome.state = FileState.SKIPPED_UNVERIFIED
            return outcome

        logger.info(f"Verifying existing file... ({algorithm.value})")
        try:
            digest = await verify_existing(
                outcome.source, outcome.destination, algorithm, self.config.chunk_size
            )
        except VerificationMismatch as e:
            return self._fail(outcome, FileState.SKIPPED_FAILED, str(e))

        logger.info(f"Checksums match: {digest}")
        outcome.state = FileState.SKIPPED_VERIFIED
        outcome.checksum = digest
        return self._add_record(
            outcome, source_stat, manifest, FileState.SKIPPED_FAILED
        )

    async def _handle_copy(
        self,
        outcome: FileOutcome,
        source_stat: os.stat_result,
        manifest: RunManifest,
    ) -> FileOutcome:
        if self.config.preview:
            outcome.state = FileState.PLANNED_COPY
            return outcome

        algorithm = self.config.algorithm
        copier = FileCopier(
            outcome.source,
            outcome.destination,
            algorithm=algorithm,
            chunk_size=self.config.chunk_size,
            require_creation_time=self.config.require_creation_time,
        )

        result = None
        try:
            async for event in copier.copy():
                if isinstance(event, CopyResult):
                    result = event
                    continue
                if event.type == EventType.COPY_PROGRESS:
                    logger.debug(f"Transfer speed: {format_speed(event.speed)}")
                if self.on_event:
                    self.on_event(event)
        except CopyError as e:
            return self._fail(outcome, FileState.COPIED_FAILED, str(e))

        outcome.bytes_copied = result.bytes_copied

        if result.checksum is None:
            outcome.state = FileState.COPIED_NO_CHECKSUM
            return outcome

        logger.info(f"Verifying checksum... ({algorithm.value})")
        try:
            await verify_copy(
                outcome.destination, result.checksum, algorithm, self.config.chunk_size
            )
        except VerificationMismatch as e:
            return self._fail(outcome, FileState.COPIED_FAILED, str(e))

        logger.info(f"Checksums match: {result.checksum}")
        outcome.state = FileState.COPIED_VERIFIED
        outcome.checksum = result.checksum
        return self._add_record(
            outcome, source_stat, manifest, FileState.COPIED_FAILED
        )

    def _add_record(
        self,
        outcome: FileOutcome,
        source_stat: os.stat_result,
        manifest: RunManifest,
        failed_state: FileState,
    ) -> FileOutcome:
        try:
            manifest.add(self._record(outcome, source_stat))
        except ValueError as e:
            # Only a failure when the user asked for the mhl file
            if self.config.write_manifest:
                return self._fail(
                    outcome, failed_state, f"Cannot add to mhl file: {e}"
                )
            logger.warning(f"Not recorded: {e}")
        return outcome

    def _record(
        self, outcome: FileOutcome, source_stat: os.stat_result
    ) -> FileRecord:
        return FileRecord(
            relative_path=outcome.destination.relative_to(
                self.config.destination_root
            ).as_posix(),
            size_bytes=source_stat.st_size,
            modified_at=timestamp_from_posix(source_stat.st_mtime),
            checksum=outcome.checksum,
            checksum_algorithm=self.config.algorithm,
            hashed_at=self.clock(),
        )

    @staticmethod
    def _fail(outcome: FileOutcome, state: FileState, error: str) -> FileOutcome:
        logger.error(f"Error: {error}")
        outcome.state = state
        outcome.error = error
        return outcome

    def _create_empty_dirs(self, empty_dirs: list[Path]) -> list[Path]:
        failed = []
        for directory in empty_dirs:
            target = self.config.destination_root / directory.relative_to(
                self.config.source_root
            )
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Error: Could not create directory {target}: {e}")
                failed.append(directory)
        return failed
