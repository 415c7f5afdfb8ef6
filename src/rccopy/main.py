#!/usr/bin/env python3
"""
rccopy - Copy a directory tree with checksum verification and MHL output.

Copies an input directory to a destination directory while preserving the
directory structure, verifies every copied file with a checksum and can
write a MediaHashList (MHL) file with the checksums into the destination.

The core (``CopyJob``) never touches stdout. This module wires it to the
command line, prints progress and maps the outcome to an exit code.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import RunConfig
from .copier import CopyEvent, EventType, format_speed
from .engine import SEPARATOR, CopyJob, RunStatus, RunSummary
from .exceptions import RccopyError
from .manifest import verify_manifest

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Parameters
    ----------
    verbose : bool
        Enable debug output
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def show_progress(event: CopyEvent) -> None:
    """Print the smoothed transfer speed on a single, rewritten line."""
    if event.type == EventType.COPY_START:
        sys.stdout.write(f"\rTransfer speed: {'---.-- MB/s':30}\r")
    elif event.type == EventType.COPY_PROGRESS:
        sys.stdout.write(f"\rTransfer speed: {format_speed(event.speed):30}\r")
    elif event.type == EventType.COPY_COMPLETE:
        sys.stdout.write("\n")
    sys.stdout.flush()


def show_final_summary(summary: RunSummary) -> None:
    """
    Display final summary of the run.

    Parameters
    ----------
    summary : RunSummary
        Result of the run
    """
    print(SEPARATOR)

    status = summary.status
    if status == RunStatus.DRY_RUN:
        print("Finished dry run.")
    elif status == RunStatus.COMPLETED_WITH_ERRORS:
        print("Finished with errors.")
        if summary.failed_files:
            print("Failed files:")
            for path in summary.failed_files:
                print(path)
    elif status == RunStatus.SUCCESS:
        print("Finished successfully. 🎉")
    else:
        print("Nothing to copy.")

    if summary.manifest_path:
        print(f"MHL file: {summary.manifest_path}")
    elif summary.manifest_error:
        print(f"Could not write mhl file: {summary.manifest_error}")


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns
    -------
    argparse.Namespace
        Parsed command line arguments
    """
    parser = argparse.ArgumentParser(
        prog="rccopy",
        description=(
            "Copy an input directory to a destination directory, preserving the "
            "directory structure and verifying every file with a checksum. "
            "Can write an MHL (MediaHashList) file to the destination."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -i /Volumes/A001 -d /Volumes/Backup/A001 -c xxhash64 -m
  %(prog)s -i /Volumes/A001 -d /Volumes/Backup/A001 --dry-run
  %(prog)s --verify-mhl /Volumes/Backup/A001/A001_2024-05-01_123005.mhl
        """,
    )

    parser.add_argument(
        "-i", "--input", type=Path, help="The source directory to copy."
    )
    parser.add_argument(
        "-d", "--destination", type=Path, help="The target directory to copy to."
    )
    # Validated by Algorithm.parse so an unknown name is a configuration error
    parser.add_argument(
        "-c",
        "--checksum",
        type=str,
        default=None,
        help="The checksum method to use. Possible checksums: md5, sha1, xxhash64.",
    )
    parser.add_argument(
        "-m",
        "--mhl",
        action="store_true",
        help="Write a mhl file to the destination directory.",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Preview the files that will be copied."
    )
    parser.add_argument(
        "--require-creation-time",
        action="store_true",
        help="Fail a file if its creation time cannot be preserved. By default a "
        "missing creation time is only logged as a warning.",
    )
    parser.add_argument(
        "--verify-mhl",
        type=Path,
        metavar="MHL",
        help="Verify the files listed in an existing mhl file and exit. "
        "Paths are resolved against --destination or the mhl file's directory.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )

    args = parser.parse_args(argv)
    if args.verify_mhl is None and (args.input is None or args.destination is None):
        parser.error(
            "the following arguments are required: -i/--input, -d/--destination"
        )
    return args


def run_verify_manifest(mhl_path: Path, root: Path | None) -> int:
    """Verify an existing manifest and return the exit code."""
    failures = verify_manifest(mhl_path, root)
    print(SEPARATOR)
    if failures:
        print("Verification failed:")
        for relative_path, problem in failures:
            print(f"{relative_path}: {problem}")
        return 1
    print("All files verified. 🎉")
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Returns
    -------
    int
        Exit code: 0 for success, 1 for failure, 130 for keyboard interrupt
    """
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    try:
        if args.verify_mhl is not None:
            return run_verify_manifest(args.verify_mhl, args.destination)

        config = RunConfig.from_args(args)
        job = CopyJob(config, on_event=show_progress)
        summary = asyncio.run(job.run())
        show_final_summary(summary)
        return 0 if summary.success else 1

    except KeyboardInterrupt:
        print("\nOperation interrupted by user")
        return 130
    except RccopyError as e:
        logger.error(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
