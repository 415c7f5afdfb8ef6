"""
Incremental checksum calculation for the supported algorithms.

Every algorithm is described once in ``ALGORITHMS``: how to build a hasher,
how wide its hex digest is and which element name it uses in an MHL file.
"""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles
import xxhash

from .exceptions import ConfigurationError

# Constants
CHUNK_SIZE = 8 * 1024 * 1024  # 8MB


class Algorithm(Enum):
    """
    Checksum algorithms understood by rccopy.

    Attributes
    ----------
    MD5 : str
        MD5, 32 hex characters
    SHA1 : str
        SHA-1, 40 hex characters
    XXH64 : str
        xxHash64 (seed 0), 16 hex characters, written big-endian
    """

    MD5 = "md5"
    SHA1 = "sha1"
    XXH64 = "xxhash64"

    @classmethod
    def parse(cls, name: str) -> "Algorithm":
        """
        Look up an algorithm by its name or its manifest tag.

        Parameters
        ----------
        name : str
            Algorithm name, case-insensitive (``md5``, ``sha1``, ``xxhash64``
            or ``xxhash64be``)

        Returns
        -------
        Algorithm
            Matching algorithm

        Raises
        ------
        ConfigurationError
            If the name does not match any supported algorithm
        """
        key = name.strip().lower()
        for algorithm, spec in ALGORITHMS.items():
            if key in (algorithm.value, spec.manifest_tag):
                return algorithm
        supported = ", ".join(a.value for a in cls)
        raise ConfigurationError(
            f"Unsupported checksum algorithm: {name!r} (supported: {supported})"
        )

    @classmethod
    def from_manifest_tag(cls, tag: str) -> "Algorithm | None":
        """Return the algorithm whose manifest element is ``tag``, if any."""
        for algorithm, spec in ALGORITHMS.items():
            if spec.manifest_tag == tag:
                return algorithm
        return None

    @property
    def hex_width(self) -> int:
        return ALGORITHMS[self].hex_width

    @property
    def manifest_tag(self) -> str:
        return ALGORITHMS[self].manifest_tag


@dataclass(frozen=True)
class AlgorithmSpec:
    """
    Static description of a checksum algorithm.

    Attributes
    ----------
    factory : Callable[[], Any]
        Creates a fresh hasher exposing ``update`` and ``hexdigest``
    hex_width : int
        Number of hex characters in a digest
    manifest_tag : str
        Element name used for the checksum in an MHL file
    """

    factory: Callable[[], Any]
    hex_width: int
    manifest_tag: str


ALGORITHMS: dict[Algorithm, AlgorithmSpec] = {
    Algorithm.MD5: AlgorithmSpec(hashlib.md5, 32, "md5"),
    Algorithm.SHA1: AlgorithmSpec(hashlib.sha1, 40, "sha1"),
    # xxhash's hexdigest is the canonical big-endian form, hence the "be" tag
    Algorithm.XXH64: AlgorithmSpec(lambda: xxhash.xxh64(seed=0), 16, "xxhash64be"),
}


class HashCalculator:
    """
    Incremental hash calculator for one of the supported algorithms.

    Parameters
    ----------
    algorithm : Algorithm | str
        Algorithm to use. Strings are resolved with ``Algorithm.parse``.

    Raises
    ------
    ConfigurationError
        If ``algorithm`` is a string naming an unsupported algorithm
    """

    def __init__(self, algorithm: Algorithm | str):
        if not isinstance(algorithm, Algorithm):
            algorithm = Algorithm.parse(algorithm)
        self.algorithm = algorithm
        self._spec = ALGORITHMS[algorithm]
        self._hasher = self._spec.factory()

    def update(self, data: bytes) -> None:
        """
        Update hash with new data.

        Parameters
        ----------
        data : bytes
            Data chunk to add to the hash
        """
        self._hasher.update(data)

    def hexdigest(self) -> str:
        """
        Get final hex digest.

        Returns
        -------
        str
            Lowercase, zero-padded hex digest of ``hex_width`` characters
        """
        return self._hasher.hexdigest().lower().zfill(self._spec.hex_width)

    @staticmethod
    def hash_bytes(data: bytes, algorithm: Algorithm | str) -> str:
        """Hash an in-memory byte string in one go."""
        hasher = HashCalculator(algorithm)
        hasher.update(data)
        return hasher.hexdigest()

    @staticmethod
    async def hash_file_async(
        path: Path,
        algorithm: Algorithm | str,
        chunk_size: int = CHUNK_SIZE,
    ) -> AsyncIterator[tuple[int, str]]:
        """
        Hash a file asynchronously and yield progress.

        Parameters
        ----------
        path : Path
            Path to file to hash
        algorithm : Algorithm | str
            Hash algorithm to use
        chunk_size : int, default=CHUNK_SIZE
            Number of bytes read per chunk

        Yields
        ------
        tuple[int, str]
            (bytes_hashed, final_hash_or_empty_string)
            Progress updates yield empty string, final yield contains complete hash
        """
        hasher = HashCalculator(algorithm)
        total_bytes = 0

        async with aiofiles.open(path, "rb") as f:
            while chunk := await f.read(chunk_size):
                hasher.update(chunk)
                total_bytes += len(chunk)
                yield (total_bytes, "")

        yield (total_bytes, hasher.hexdigest())

    @staticmethod
    def hash_file(
        path: Path,
        algorithm: Algorithm | str,
        chunk_size: int = CHUNK_SIZE,
    ) -> Iterator[tuple[int, str]]:
        """
        Hash a file and yield progress (sync version).

        Parameters
        ----------
        path : Path
            Path to file to hash
        algorithm : Algorithm | str
            Hash algorithm to use
        chunk_size : int, default=CHUNK_SIZE
            Number of bytes read per chunk

        Yields
        ------
        tuple[int, str]
            (bytes_hashed, final_hash_or_empty_string)
        """
        hasher = HashCalculator(algorithm)
        total_bytes = 0

        with open(path, "rb") as f:
            while chunk := f.read(chunk_size):
                hasher.update(chunk)
                total_bytes += len(chunk)
                yield (total_bytes, "")

        yield (total_bytes, hasher.hexdigest())
