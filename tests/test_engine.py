#!/usr/bin/env python3
"""
Tests for the copy orchestration.

Tests cover:
- Copy, verify and record of a whole tree
- Skip handling for existing files (verified and failed)
- Idempotent re-runs
- Dry runs
- Per-file error isolation
- Manifest emission rules
- Fatal configuration and path errors
- Unreadable directories, unstorable file names and manifest write failures
"""

import os
import shutil
import sys
import tempfile
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
import xxhash

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rccopy import (
    Algorithm,
    ConfigurationError,
    CopyJob,
    CreatorInfo,
    FileState,
    ManifestWriteError,
    PathError,
    RunConfig,
    RunStatus,
    read_manifest,
)

START = datetime(2024, 5, 1, 12, 30, 5, tzinfo=timezone.utc)
CREATOR = CreatorInfo(
    name="dit-cart",
    username="operator",
    hostname="dit-cart.local",
    tool="rccopy ver. 1.0.0",
)


def make_job(source, destination, **kwargs) -> CopyJob:
    config = RunConfig(source_root=source, destination_root=destination, **kwargs)
    return CopyJob(config, creator=CREATOR, clock=lambda: START)


def snapshot(root: Path) -> dict[str, bytes | None]:
    """Map every path below root to its content (None for directories)."""
    return {
        str(path.relative_to(root)): None if path.is_dir() else path.read_bytes()
        for path in sorted(root.rglob("*"))
    }


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def copy_env():
    """Create a source tree with a.txt and sub/b.bin plus an empty destination."""
    test_dir = tempfile.mkdtemp()
    test_path = Path(test_dir)

    source = test_path / "A001"
    (source / "sub").mkdir(parents=True)
    (source / "a.txt").write_bytes(b"0123456789abcdef")
    (source / "sub" / "b.bin").write_bytes(b"")
    (source / ".DS_Store").write_bytes(b"finder")

    destination = test_path / "backup"
    destination.mkdir()

    yield source, destination
    shutil.rmtree(test_dir)


# ============================================================================
# Copy Tests
# ============================================================================


@pytest.mark.asyncio
async def test_copy_tree_with_xxhash_and_manifest(copy_env) -> None:
    """Test copying a.txt and sub/b.bin with xxhash64 and an MHL file."""
    source, destination = copy_env

    summary = await make_job(
        source, destination, algorithm="xxhash64", write_manifest=True
    ).run()

    assert summary.status == RunStatus.SUCCESS
    assert summary.success
    assert [o.state for o in summary.outcomes] == [FileState.COPIED_VERIFIED] * 2
    assert (destination / "a.txt").read_bytes() == b"0123456789abcdef"
    assert (destination / "sub" / "b.bin").read_bytes() == b""
    assert not (destination / ".DS_Store").exists()

    a_outcome = summary.outcomes[0]
    assert a_outcome.checksum == xxhash.xxh64(b"0123456789abcdef").hexdigest()
    assert len(a_outcome.checksum) == 16

    assert summary.manifest_path == destination / "A001_2024-05-01_123005.mhl"
    document = ET.parse(summary.manifest_path).getroot()
    entries = document.findall("hash")
    assert len(entries) == 2
    assert [e.findtext("file") for e in entries] == ["a.txt", "sub/b.bin"]
    assert [e.findtext("size") for e in entries] == ["16", "0"]
    assert all(e.find("xxhash64be") is not None for e in entries)
    assert entries[0].findtext("xxhash64be") == a_outcome.checksum


@pytest.mark.asyncio
async def test_copy_without_checksum(copy_env) -> None:
    """Test that no algorithm copies everything but records nothing."""
    source, destination = copy_env

    summary = await make_job(source, destination, write_manifest=True).run()

    assert summary.success
    assert [o.state for o in summary.outcomes] == [FileState.COPIED_NO_CHECKSUM] * 2
    assert summary.manifest_path is None
    assert not list(destination.glob("*.mhl"))
    assert (destination / "a.txt").read_bytes() == b"0123456789abcdef"


@pytest.mark.asyncio
async def test_no_manifest_unless_requested(copy_env) -> None:
    """Test that the MHL file is only written when asked for."""
    source, destination = copy_env

    summary = await make_job(source, destination, algorithm=Algorithm.MD5).run()

    assert summary.success
    assert summary.manifest_path is None
    assert not list(destination.glob("*.mhl"))
    assert len(summary.manifest) == 2


@pytest.mark.asyncio
async def test_empty_directories_recreated(copy_env) -> None:
    """Test that empty source directories exist at the destination afterwards."""
    source, destination = copy_env
    (source / "AUDIO" / "EMPTY").mkdir(parents=True)

    summary = await make_job(source, destination, algorithm="md5").run()

    assert summary.success
    assert (destination / "AUDIO" / "EMPTY").is_dir()


# ============================================================================
# Skip Tests
# ============================================================================


@pytest.mark.asyncio
async def test_rerun_is_idempotent(copy_env) -> None:
    """Test that a second run verifies every file and writes nothing new."""
    source, destination = copy_env
    first = await make_job(
        source, destination, algorithm="sha1", write_manifest=True
    ).run()
    first_manifest = read_manifest(first.manifest_path)
    first.manifest_path.unlink()

    with patch("rccopy.engine.FileCopier") as copier:
        second = await make_job(
            source, destination, algorithm="sha1", write_manifest=True
        ).run()

    copier.assert_not_called()
    assert [o.state for o in second.outcomes] == [FileState.SKIPPED_VERIFIED] * 2
    assert second.bytes_copied == 0
    assert second.success
    assert second.status == RunStatus.NOTHING_TO_COPY

    def key(record):
        return (
            record.relative_path,
            record.size_bytes,
            record.checksum,
            record.checksum_algorithm,
        )

    second_manifest = read_manifest(second.manifest_path)
    assert [key(r) for r in second_manifest.records] == [
        key(r) for r in first_manifest.records
    ]


@pytest.mark.asyncio
async def test_same_size_different_content_fails(copy_env) -> None:
    """Test that a same-size destination with other content is a failure."""
    source, destination = copy_env
    (destination / "a.txt").write_bytes(b"fedcba9876543210")

    summary = await make_job(
        source, destination, algorithm="xxhash64", write_manifest=True
    ).run()

    states = {o.source.name: o.state for o in summary.outcomes}
    assert states == {
        "a.txt": FileState.SKIPPED_FAILED,
        "b.bin": FileState.COPIED_VERIFIED,
    }
    assert summary.status == RunStatus.COMPLETED_WITH_ERRORS
    assert not summary.success
    assert summary.failed_files == [source / "a.txt"]
    # The existing file is left alone
    assert (destination / "a.txt").read_bytes() == b"fedcba9876543210"

    records = read_manifest(summary.manifest_path).records
    assert [r.relative_path for r in records] == ["sub/b.bin"]


@pytest.mark.asyncio
async def test_same_size_without_checksum_is_skipped(copy_env) -> None:
    """Test that without an algorithm a same-size file is skipped unverified."""
    source, destination = copy_env
    (destination / "a.txt").write_bytes(b"fedcba9876543210")

    summary = await make_job(source, destination).run()

    assert summary.outcomes[0].state == FileState.SKIPPED_UNVERIFIED
    assert summary.success
    assert (destination / "a.txt").read_bytes() == b"fedcba9876543210"


@pytest.mark.asyncio
async def test_different_size_is_overwritten(copy_env) -> None:
    """Test that a destination of another size is copied over."""
    source, destination = copy_env
    (destination / "a.txt").write_bytes(b"short")

    summary = await make_job(source, destination, algorithm="md5").run()

    assert summary.outcomes[0].state == FileState.COPIED_VERIFIED
    assert (destination / "a.txt").read_bytes() == b"0123456789abcdef"


# ============================================================================
# Dry Run Tests
# ============================================================================


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(copy_env) -> None:
    """Test that a preview leaves the destination byte-identical."""
    source, destination = copy_env
    (source / "EMPTY").mkdir()
    (destination / "a.txt").write_bytes(b"fedcba9876543210")
    before = snapshot(destination)

    summary = await make_job(
        source, destination, algorithm="md5", write_manifest=True, preview=True
    ).run()

    assert snapshot(destination) == before
    assert [o.state for o in summary.outcomes] == [
        FileState.PLANNED_SKIP,
        FileState.PLANNED_COPY,
    ]
    assert summary.status == RunStatus.DRY_RUN
    assert summary.success
    assert summary.manifest_path is None


# ============================================================================
# Error Handling Tests
# ============================================================================


@pytest.mark.asyncio
async def test_copy_error_does_not_stop_run(copy_env) -> None:
    """Test that one failing file is recorded and the others still copy."""
    source, destination = copy_env
    # A regular file where the sub directory should go
    (destination / "sub").write_bytes(b"in the way")

    summary = await make_job(
        source, destination, algorithm="md5", write_manifest=True
    ).run()

    states = [o.state for o in summary.outcomes]
    assert states == [FileState.COPIED_VERIFIED, FileState.COPIED_FAILED]
    assert summary.failed_files == [source / "sub" / "b.bin"]
    assert summary.outcomes[1].error
    assert [r.relative_path for r in read_manifest(summary.manifest_path).records] == [
        "a.txt"
    ]


@pytest.mark.asyncio
async def test_corrupted_copy_not_recorded(copy_env) -> None:
    """Test that a copy whose destination changes before verification fails."""
    source, destination = copy_env

    def corrupt(src, dest, require_creation_time=False):
        with open(dest, "ab") as f:
            f.write(b"CORRUPTED")

    with patch("rccopy.copier.preserve_metadata", corrupt):
        summary = await make_job(
            source, destination, algorithm="xxhash64", write_manifest=True
        ).run()

    assert [o.state for o in summary.outcomes] == [FileState.COPIED_FAILED] * 2
    assert "mismatch" in summary.outcomes[0].error.lower()
    assert summary.manifest_path is None
    assert summary.status == RunStatus.COMPLETED_WITH_ERRORS


UNSTORABLE_NAMES = [
    pytest.param("a\x01b.txt", id="control_character"),
    pytest.param(os.fsdecode(b"clip\xff.mov"), id="undecodable_bytes"),
]


@pytest.mark.asyncio
async def test_unreadable_directory_does_not_stop_run(copy_env) -> None:
    """Test that a directory that cannot be listed is reported as failed."""
    source, destination = copy_env
    locked = source / "sub"
    original = Path.iterdir

    def iterdir(self):
        if self == locked:
            raise PermissionError(13, "Permission denied", str(self))
        return original(self)

    with patch.object(Path, "iterdir", iterdir):
        summary = await make_job(
            source, destination, algorithm="md5", write_manifest=True
        ).run()

    assert [o.source for o in summary.outcomes] == [source / "a.txt"]
    assert (destination / "a.txt").read_bytes() == b"0123456789abcdef"
    assert summary.failed_files == [locked]
    assert summary.status == RunStatus.COMPLETED_WITH_ERRORS
    assert [r.relative_path for r in read_manifest(summary.manifest_path).records] == [
        "a.txt"
    ]


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform != "linux", reason="needs arbitrary file names")
@pytest.mark.parametrize("name", UNSTORABLE_NAMES)
async def test_unstorable_name_fails_file(copy_env, name) -> None:
    """Test that a file whose name cannot go into the MHL file is failed."""
    source, destination = copy_env
    (source / name).write_bytes(b"odd name")

    summary = await make_job(
        source, destination, algorithm="md5", write_manifest=True
    ).run()

    failed = [o for o in summary.outcomes if o.state.failed]
    assert [o.source for o in failed] == [source / name]
    assert failed[0].state == FileState.COPIED_FAILED
    assert "mhl" in failed[0].error
    assert summary.status == RunStatus.COMPLETED_WITH_ERRORS
    records = read_manifest(summary.manifest_path).records
    assert [r.relative_path for r in records] == ["a.txt", "sub/b.bin"]


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform != "linux", reason="needs arbitrary file names")
async def test_unstorable_name_without_manifest(copy_env) -> None:
    """Test that odd file names only matter when an MHL file is requested."""
    source, destination = copy_env
    (source / "a\x01b.txt").write_bytes(b"odd name")

    summary = await make_job(source, destination, algorithm="md5").run()

    assert summary.status == RunStatus.SUCCESS
    assert (destination / "a\x01b.txt").read_bytes() == b"odd name"


@pytest.mark.asyncio
async def test_manifest_write_error_kept_in_summary(copy_env) -> None:
    """Test that a failed MHL write still returns the summary with failures."""
    source, destination = copy_env
    (destination / "sub").write_bytes(b"in the way")

    with patch(
        "rccopy.engine.write_manifest", side_effect=ManifestWriteError("disk full")
    ):
        summary = await make_job(
            source, destination, algorithm="md5", write_manifest=True
        ).run()

    assert summary.manifest_path is None
    assert summary.manifest_error == "disk full"
    assert summary.failed_files == [source / "sub" / "b.bin"]
    assert summary.status == RunStatus.COMPLETED_WITH_ERRORS
    assert not summary.success


def test_unsupported_algorithm_is_fatal(copy_env) -> None:
    """Test that crc32 is rejected before any file is touched."""
    source, destination = copy_env

    with pytest.raises(ConfigurationError):
        make_job(source, destination, algorithm="crc32")

    assert list(destination.iterdir()) == []


def test_invalid_chunk_size(copy_env) -> None:
    """Test that the chunk size must be positive."""
    source, destination = copy_env

    with pytest.raises(ConfigurationError):
        RunConfig(source_root=source, destination_root=destination, chunk_size=0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "case",
    ["missing_source", "missing_destination", "file_source", "same", "nested"],
)
async def test_path_errors(copy_env, case) -> None:
    """Test that unusable roots abort the run before processing."""
    source, destination = copy_env
    if case == "missing_source":
        source = source.parent / "missing"
    elif case == "missing_destination":
        destination = destination.parent / "missing"
    elif case == "file_source":
        source = source / "a.txt"
    elif case == "same":
        destination = source
    elif case == "nested":
        destination = source / "sub"

    job = make_job(source, destination, algorithm="md5")

    with pytest.raises(PathError):
        await job.run()


@pytest.mark.asyncio
async def test_nothing_to_copy(tmp_path) -> None:
    """Test an empty source directory."""
    source = tmp_path / "empty"
    source.mkdir()
    destination = tmp_path / "dest"
    destination.mkdir()

    summary = await make_job(
        source, destination, algorithm="md5", write_manifest=True
    ).run()

    assert summary.status == RunStatus.NOTHING_TO_COPY
    assert summary.success
    assert summary.manifest_path is None
    assert os.listdir(destination) == []
