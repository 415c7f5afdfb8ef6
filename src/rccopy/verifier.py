"""
Post-copy checksum verification.

Every check re-reads the file from disk from the start. A checksum computed
while copying is never trusted on its own.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .exceptions import VerificationMismatch
from .hashing import CHUNK_SIZE, Algorithm, HashCalculator

logger = logging.getLogger(__name__)


def checksum(path: Path, algorithm: Algorithm, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Hash a file from start to end.

    Parameters
    ----------
    path : Path
        File to hash
    algorithm : Algorithm
        Checksum algorithm
    chunk_size : int, default=CHUNK_SIZE
        Bytes read per chunk

    Returns
    -------
    str
        Hex digest of the file

    Raises
    ------
    VerificationMismatch
        If the file could not be read
    """
    final_hash = ""
    try:
        for _, final_hash in HashCalculator.hash_file(path, algorithm, chunk_size):
            pass
    except OSError as e:
        raise VerificationMismatch(path, None, None, reason=str(e)) from e
    return final_hash


async def checksum_async(
    path: Path, algorithm: Algorithm, chunk_size: int = CHUNK_SIZE
) -> str:
    """Async variant of ``checksum``."""
    final_hash = ""
    try:
        async for _, final_hash in HashCalculator.hash_file_async(
            path, algorithm, chunk_size
        ):
            pass
    except OSError as e:
        raise VerificationMismatch(path, None, None, reason=str(e)) from e
    return final_hash


def checksums_match(first: str | None, second: str | None) -> bool:
    """Compare two digests, ignoring case. A missing digest never matches."""
    if not first or not second:
        return False
    return first.lower() == second.lower()


async def verify_copy(
    destination: Path,
    expected: str,
    algorithm: Algorithm,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """
    Re-hash a freshly copied file and compare it with the source digest.

    Returns
    -------
    str
        The verified digest

    Raises
    ------
    VerificationMismatch
        If the digests differ or the destination could not be read
    """
    actual = await checksum_async(destination, algorithm, chunk_size)
    if not checksums_match(expected, actual):
        raise VerificationMismatch(destination, expected, actual)
    logger.debug(f"Verified {destination}: {actual}")
    return actual


async def verify_existing(
    source: Path,
    destination: Path,
    algorithm: Algorithm,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """
    Hash both sides of a file that was skipped because the sizes match.

    Parameters
    ----------
    source : Path
        Source file
    destination : Path
        Existing destination file of the same size
    algorithm : Algorithm
        Checksum algorithm
    chunk_size : int, default=CHUNK_SIZE
        Bytes read per chunk

    Returns
    -------
    str
        The digest shared by both files

    Raises
    ------
    VerificationMismatch
        If the digests differ or either file could not be read
    """
    expected = await checksum_async(source, algorithm, chunk_size)
    actual = await checksum_async(destination, algorithm, chunk_size)
    if not checksums_match(expected, actual):
        raise VerificationMismatch(destination, expected, actual)
    return expected
