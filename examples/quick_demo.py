#!/usr/bin/env python3
"""
Quick demonstration of rccopy functionality.

This script creates a fake camera card, offloads it with checksum
verification and an MHL file, re-runs the offload to show that existing files
are verified instead of copied, and finally checks the MHL file.
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rccopy import CopyJob, RunConfig, verify_manifest
from rccopy.main import setup_logging


def create_demo_card(card: Path) -> None:
    """
    Create a directory that looks like a camera card.

    Parameters
    ----------
    card : Path
        Root of the card to create
    """
    clips = {
        "CLIPS/A001C001.mov": b"Camera footage data 001\n" * 20_000,
        "CLIPS/A001C002.mov": b"Camera footage data 002\n" * 40_000,
        "AUDIO/A001_T01.wav": b"Sound roll\n" * 5_000,
        "A001.xml": b"<card roll='A001'/>",
    }
    for relative_path, data in clips.items():
        target = card / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        print(f"📁 Created demo file: {relative_path} ({len(data):,} bytes)")

    (card / "PROXY").mkdir()
    (card / ".DS_Store").write_bytes(b"ignored")


def demo_offload(card: Path, backup: Path) -> Path | None:
    """Copy the card with xxhash64 verification and write an MHL file."""
    print("\n" + "=" * 50)
    print("🚀 DEMO: Verified offload with MHL")
    print("=" * 50)

    config = RunConfig(
        source_root=card,
        destination_root=backup,
        algorithm="xxhash64",
        write_manifest=True,
    )
    summary = asyncio.run(CopyJob(config).run())

    for outcome in summary.outcomes:
        print(f"  {outcome.state.value:<20} {outcome.source.relative_to(card)}")
    print(f"📄 MHL file: {summary.manifest_path}")
    return summary.manifest_path


def demo_rerun(card: Path, backup: Path) -> None:
    """Run the same offload again: every file is verified, nothing copied."""
    print("\n" + "=" * 50)
    print("🔁 DEMO: Re-running the offload")
    print("=" * 50)

    config = RunConfig(source_root=card, destination_root=backup, algorithm="xxhash64")
    summary = asyncio.run(CopyJob(config).run())

    print(f"  Bytes copied on re-run: {summary.bytes_copied}")
    print(f"  Status: {summary.status.value}")


def main() -> None:
    """Run all demonstrations."""
    print("🎬 rccopy - Verified Copy Demo")
    print("=" * 60)

    setup_logging(verbose=False)

    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)
        card = temp_path / "A001"
        backup = temp_path / "backup"
        backup.mkdir()

        create_demo_card(card)
        mhl_file = demo_offload(card, backup)
        demo_rerun(card, backup)

        if mhl_file:
            failures = verify_manifest(mhl_file)
            print("\n🔒 MHL verification:", "OK" if not failures else failures)


if __name__ == "__main__":
    main()
