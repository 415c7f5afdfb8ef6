"""
Streaming file copy with in-flight hashing and throughput reporting.

The copier is UI-agnostic: it yields ``CopyEvent`` objects and never touches
stdout. Callers decide how to present progress.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import aiofiles

from .exceptions import CopyError
from .hashing import CHUNK_SIZE, Algorithm, HashCalculator
from .metadata import preserve_metadata

PROGRESS_INTERVAL = 0.1  # seconds between throughput samples
SPEED_WINDOW = 10  # samples in the moving average


# ============================================================================
# Data Models
# ============================================================================


class EventType(Enum):
    """
    Events emitted during a copy.

    Attributes
    ----------
    COPY_START : str
        Copy operation started
    COPY_PROGRESS : str
        Throughput sample taken
    COPY_COMPLETE : str
        All bytes written and metadata preserved
    """

    COPY_START = "copy_start"
    COPY_PROGRESS = "copy_progress"
    COPY_COMPLETE = "copy_complete"


@dataclass
class CopyEvent:
    """
    Event emitted during a copy operation.

    Attributes
    ----------
    type : EventType
        Type of event
    bytes_processed : int, default=0
        Number of bytes copied so far
    total_bytes : int, default=0
        Size of the source file
    speed : float, default=0.0
        Smoothed throughput in bytes per second
    message : str, default=""
        Optional message describing the event
    """

    type: EventType
    bytes_processed: int = 0
    total_bytes: int = 0
    speed: float = 0.0
    message: str = ""


@dataclass
class CopyResult:
    """
    Final result of a single file copy.

    Attributes
    ----------
    source_path : Path
        Source file path
    destination_path : Path
        Destination file path
    bytes_copied : int
        Number of bytes written
    checksum : str | None, default=None
        Digest computed in-flight, None if no algorithm was requested
    duration : float, default=0.0
        Copy duration in seconds
    """

    source_path: Path
    destination_path: Path
    bytes_copied: int
    checksum: str | None = None
    duration: float = 0.0

    @property
    def speed(self) -> float:
        """Average transfer speed in bytes per second."""
        if self.duration > 0:
            return self.bytes_copied / self.duration
        return 0.0


# ============================================================================
# Throughput
# ============================================================================


def format_speed(bytes_per_second: float) -> str:
    """
    Format a transfer speed for humans.

    Parameters
    ----------
    bytes_per_second : float
        Speed in bytes per second

    Returns
    -------
    str
        Speed such as ``"512 B/s"`` or ``"12.34 MB/s"`` (1024 based)
    """
    value = int(bytes_per_second)
    if value < 1024:
        return f"{value} B/s"
    for unit in ("KB/s", "MB/s", "GB/s"):
        value_in_unit = bytes_per_second / 1024
        if value_in_unit < 1024:
            return f"{value_in_unit:.2f} {unit}"
        bytes_per_second = value_in_unit
    return f"{bytes_per_second / 1024:.2f} TB/s"


class ThroughputMeter:
    """
    Moving-average throughput over the last few samples.

    Parameters
    ----------
    interval : float, default=PROGRESS_INTERVAL
        Minimum wall-clock seconds between two samples
    window : int, default=SPEED_WINDOW
        Number of instantaneous samples averaged
    clock : Callable[[], float], default=time.monotonic
        Time source, injectable for tests
    """

    def __init__(
        self,
        interval: float = PROGRESS_INTERVAL,
        window: int = SPEED_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.samples: deque[float] = deque(maxlen=window)
        self._clock = clock
        self._last_sample = clock()
        self._pending_bytes = 0

    def add(self, nbytes: int) -> float | None:
        """
        Account for ``nbytes`` moved and take a sample if the interval passed.

        Returns
        -------
        float | None
            Smoothed speed in bytes per second when a sample was taken,
            otherwise None
        """
        self._pending_bytes += nbytes
        now = self._clock()
        elapsed = now - self._last_sample
        if elapsed < self.interval or elapsed <= 0:
            return None

        self.samples.append(self._pending_bytes / elapsed)
        self._pending_bytes = 0
        self._last_sample = now
        return self.average

    @property
    def average(self) -> float:
        if not self.samples:
            return 0.0
        return sum(self.samples) / len(self.samples)


# ============================================================================
# Copier
# ============================================================================


class FileCopier:
    """
    Copy one file in fixed-size chunks, hashing each chunk as it is written.

    Parameters
    ----------
    source : Path
        Source file path
    destination : Path
        Destination file path, truncated or created
    algorithm : Algorithm | None, default=None
        Checksum algorithm for in-flight hashing, None to copy without one
    chunk_size : int, default=CHUNK_SIZE
        Number of bytes per read/write
    require_creation_time : bool, default=False
        Fail the copy if the source creation time cannot be preserved
    """

    def __init__(
        self,
        source: Path,
        destination: Path,
        algorithm: Algorithm | None = None,
        chunk_size: int = CHUNK_SIZE,
        require_creation_time: bool = False,
    ):
        self.source = source
        self.destination = destination
        self.algorithm = algorithm
        self.chunk_size = chunk_size
        self.require_creation_time = require_creation_time

    async def copy(self) -> AsyncIterator[CopyEvent | CopyResult]:
        """
        Execute the copy.

        Yields
        ------
        CopyEvent | CopyResult
            CopyEvent objects during operation, final yield is CopyResult

        Raises
        ------
        CopyError
            If the file could not be opened, read, written, or its metadata
            could not be preserved
        """
        start_time = time.time()

        try:
            self.destination.parent.mkdir(parents=True, exist_ok=True)
            total_bytes = self.source.stat().st_size
        except OSError as e:
            raise CopyError(self.source, self.destination, str(e)) from e

        yield CopyEvent(
            type=EventType.COPY_START,
            total_bytes=total_bytes,
            message=f"{self.source} --> {self.destination}",
        )

        hasher = HashCalculator(self.algorithm) if self.algorithm else None
        meter = ThroughputMeter()
        bytes_copied = 0

        try:
            async with aiofiles.open(self.source, "rb") as f_source, aiofiles.open(
                self.destination, "wb", buffering=self.chunk_size
            ) as f_dest:
                while chunk := await f_source.read(self.chunk_size):
                    await f_dest.write(chunk)
                    if hasher:
                        hasher.update(chunk)
                    bytes_copied += len(chunk)

                    speed = meter.add(len(chunk))
                    if speed is not None:
                        yield CopyEvent(
                            type=EventType.COPY_PROGRESS,
                            bytes_processed=bytes_copied,
                            total_bytes=total_bytes,
                            speed=speed,
                        )
        except OSError as e:
            raise CopyError(self.source, self.destination, str(e)) from e

        preserve_metadata(self.source, self.destination, self.require_creation_time)

        yield CopyEvent(
            type=EventType.COPY_COMPLETE,
            bytes_processed=bytes_copied,
            total_bytes=total_bytes,
            speed=meter.average,
            message="Copy complete",
        )

        yield CopyResult(
            source_path=self.source,
            destination_path=self.destination,
            bytes_copied=bytes_copied,
            checksum=hasher.hexdigest() if hasher else None,
            duration=time.time() - start_time,
        )


async def copy_file(
    source: Path,
    destination: Path,
    algorithm: Algorithm | None = None,
    chunk_size: int = CHUNK_SIZE,
    require_creation_time: bool = False,
    on_event: Callable[[CopyEvent], None] | None = None,
) -> str | None:
    """
    Copy ``source`` to ``destination`` and return the in-flight checksum.

    Returns
    -------
    str | None
        Digest of the copied bytes, or None when ``algorithm`` is None

    Raises
    ------
    CopyError
        If any part of the copy failed
    """
    copier = FileCopier(
        source, destination, algorithm, chunk_size, require_creation_time
    )
    result = None
    async for event in copier.copy():
        if isinstance(event, CopyResult):
            result = event
        elif on_event:
            on_event(event)
    return result.checksum if result else None
