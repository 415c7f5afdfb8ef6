"""
MediaHashList (MHL) manifest model, writer and reader.

Layout of a written manifest::

    <?xml version="1.0" encoding="UTF-8"?>
    <hashlist version="1.1">
      <creatorinfo>
        <name/> <username/> <hostname/> <tool/> <startdate/> <finishdate/>
      </creatorinfo>
      <hash>
        <file/> <size/> <lastmodificationdate/> <xxhash64be/> <hashdate/>
      </hash>
    </hashlist>

The checksum element of each ``<hash>`` is named after its algorithm, so a
single manifest can mix algorithms.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import re
import socket
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .exceptions import ManifestError, ManifestWriteError, VerificationMismatch
from .hashing import Algorithm
from .verifier import checksum, checksums_match

logger = logging.getLogger(__name__)

MHL_VERSION = "1.1"
MHL_SUFFIX = ".mhl"
TOOL_NAME = "rccopy"

# Anything outside the XML 1.0 character range, plus carriage returns (which
# parsers normalize to newlines) and undecodable bytes from os.fsdecode
_XML_UNSAFE = re.compile("[^\t\n\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


# ============================================================================
# Timestamps
# ============================================================================


def format_timestamp(moment: datetime) -> str:
    """
    Format a moment as an RFC 3339 UTC timestamp with second precision.

    Naive datetimes are taken to be UTC.

    Examples
    --------
    >>> format_timestamp(datetime(2024, 5, 1, 12, 30, 5, 999, tzinfo=timezone.utc))
    '2024-05-01T12:30:05Z'
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by ``format_timestamp`` (or any RFC 3339 one)."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def timestamp_from_posix(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def manifest_filename(source_root: Path, started_at: datetime) -> str:
    """
    Build the manifest file name for a run.

    Examples
    --------
    >>> manifest_filename(Path("/media/A001"), datetime(2024, 5, 1, 12, 30, 5))
    'A001_2024-05-01_123005.mhl'
    """
    stamp = (
        format_timestamp(started_at).replace(":", "").replace("T", "_").replace("Z", "")
    )
    return f"{source_root.name}_{stamp}{MHL_SUFFIX}"


# ============================================================================
# Data Models
# ============================================================================


@dataclass
class FileRecord:
    """
    One verified file in a manifest.

    Attributes
    ----------
    relative_path : str
        POSIX path relative to the copy root
    size_bytes : int
        File size in bytes
    modified_at : datetime
        Last modification time of the source file
    checksum : str
        Lowercase hex digest
    checksum_algorithm : Algorithm
        Algorithm that produced ``checksum``
    hashed_at : datetime
        When the checksum was computed
    """

    relative_path: str
    size_bytes: int
    modified_at: datetime
    checksum: str
    checksum_algorithm: Algorithm
    hashed_at: datetime

    def __post_init__(self):
        if _XML_UNSAFE.search(self.relative_path):
            raise ValueError(
                f"{self.relative_path!r} contains characters that cannot be "
                "stored in an mhl file"
            )
        self.checksum = self.checksum.lower()
        if len(self.checksum) != self.checksum_algorithm.hex_width:
            raise ValueError(
                f"{self.checksum_algorithm.value} checksum must have "
                f"{self.checksum_algorithm.hex_width} hex characters, "
                f"got {self.checksum!r}"
            )


@dataclass
class CreatorInfo:
    """
    Who and what produced a manifest.

    Attributes
    ----------
    name : str
        Device name
    username : str
        Operator user name
    hostname : str
        Network host name
    tool : str
        Tool identity, e.g. ``"rccopy ver. 1.0.0"``
    """

    name: str
    username: str
    hostname: str
    tool: str

    @classmethod
    def current(cls) -> "CreatorInfo":
        """Describe the current user, machine and rccopy version."""
        from . import __version__

        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = "unknown"

        return cls(
            name=platform.node() or socket.gethostname(),
            username=username,
            hostname=socket.gethostname(),
            tool=f"{TOOL_NAME} ver. {__version__}",
        )


@dataclass
class RunManifest:
    """
    Manifest of one rccopy run.

    Records keep the order in which they were added.
    """

    creator: CreatorInfo
    started_at: datetime
    finished_at: datetime | None = None
    records: list[FileRecord] = field(default_factory=list)

    def add(self, record: FileRecord) -> None:
        """
        Append a verified record.

        Raises
        ------
        ValueError
            If a record for the same relative path is already present
        """
        if any(r.relative_path == record.relative_path for r in self.records):
            raise ValueError(f"Duplicate manifest entry: {record.relative_path}")
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


# ============================================================================
# Writer
# ============================================================================


def _text_element(parent: ET.Element, tag: str, text: str) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = text
    return element


def build_document(manifest: RunManifest, finished_at: datetime) -> ET.Element:
    """Build the ``<hashlist>`` element tree for a manifest."""
    root = ET.Element("hashlist", {"version": MHL_VERSION})

    creator = ET.SubElement(root, "creatorinfo")
    _text_element(creator, "name", manifest.creator.name)
    _text_element(creator, "username", manifest.creator.username)
    _text_element(creator, "hostname", manifest.creator.hostname)
    _text_element(creator, "tool", manifest.creator.tool)
    _text_element(creator, "startdate", format_timestamp(manifest.started_at))
    _text_element(creator, "finishdate", format_timestamp(finished_at))

    for record in manifest.records:
        entry = ET.SubElement(root, "hash")
        _text_element(entry, "file", record.relative_path)
        _text_element(entry, "size", str(record.size_bytes))
        _text_element(
            entry, "lastmodificationdate", format_timestamp(record.modified_at)
        )
        _text_element(entry, record.checksum_algorithm.manifest_tag, record.checksum)
        _text_element(entry, "hashdate", format_timestamp(record.hashed_at))

    return root


def write_manifest(
    path: Path,
    manifest: RunManifest,
    finished_at: datetime | None = None,
) -> Path:
    """
    Serialize ``manifest`` to ``path``.

    Parameters
    ----------
    path : Path
        Output file
    manifest : RunManifest
        Records and run metadata
    finished_at : datetime | None, default=None
        Finish timestamp, defaults to the current time

    Returns
    -------
    Path
        The written file

    Raises
    ------
    ManifestWriteError
        If the document could not be encoded or the file could not be
        written. No partial file is left behind.
    """
    if finished_at is None:
        finished_at = datetime.now(timezone.utc)
    manifest.finished_at = finished_at

    root = build_document(manifest, finished_at)
    ET.indent(root, space="  ")
    try:
        body = ET.tostring(root, encoding="unicode")
        data = f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'.encode("utf-8")
    except (UnicodeError, ValueError) as e:
        raise ManifestWriteError(f"Could not encode manifest {path}: {e}") from e

    # Written beside the target and renamed into place
    temp_path = path.with_name(path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
        os.replace(temp_path, path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise ManifestWriteError(f"Could not write manifest {path}: {e}") from e

    logger.info(f"Wrote manifest with {len(manifest)} entries: {path}")
    return path


# ============================================================================
# Reader
# ============================================================================


def _required_text(
    element: ET.Element, tag: str, context: str, strip: bool = True
) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        raise ManifestError(f"Missing <{tag}> in {context}")
    return child.text.strip() if strip else child.text


def _parse_record(entry: ET.Element) -> FileRecord:
    # Not stripped, names can start or end with spaces
    relative_path = _required_text(entry, "file", "<hash>", strip=False)
    context = f"<hash> for {relative_path}"

    algorithm = None
    digest = None
    for child in entry:
        algorithm = Algorithm.from_manifest_tag(child.tag)
        if algorithm is not None:
            digest = (child.text or "").strip()
            break
    if algorithm is None:
        raise ManifestError(f"No supported checksum element in {context}")

    try:
        return FileRecord(
            relative_path=relative_path,
            size_bytes=int(_required_text(entry, "size", context)),
            modified_at=parse_timestamp(
                _required_text(entry, "lastmodificationdate", context)
            ),
            checksum=digest,
            checksum_algorithm=algorithm,
            hashed_at=parse_timestamp(_required_text(entry, "hashdate", context)),
        )
    except ValueError as e:
        raise ManifestError(f"Invalid {context}: {e}") from e


def read_manifest(path: Path) -> RunManifest:
    """
    Parse a manifest written by ``write_manifest``.

    Raises
    ------
    ManifestError
        If the file cannot be read or is not a valid hashlist
    """
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise ManifestError(f"Could not read manifest {path}: {e}") from e

    if root.tag != "hashlist":
        raise ManifestError(f"{path} is not a hashlist (root element <{root.tag}>)")

    creator_element = root.find("creatorinfo")
    if creator_element is None:
        raise ManifestError(f"Missing <creatorinfo> in {path}")

    def creator_field(tag: str) -> str:
        child = creator_element.find(tag)
        return (child.text or "").strip() if child is not None else ""

    try:
        started_at = parse_timestamp(
            _required_text(creator_element, "startdate", "<creatorinfo>")
        )
        finish_text = creator_field("finishdate")
        finished_at = parse_timestamp(finish_text) if finish_text else None
    except ValueError as e:
        raise ManifestError(f"Invalid date in <creatorinfo>: {e}") from e

    manifest = RunManifest(
        creator=CreatorInfo(
            name=creator_field("name"),
            username=creator_field("username"),
            hostname=creator_field("hostname"),
            tool=creator_field("tool"),
        ),
        started_at=started_at,
        finished_at=finished_at,
    )
    for entry in root.findall("hash"):
        manifest.records.append(_parse_record(entry))
    return manifest


def verify_manifest(path: Path, root: Path | None = None) -> list[tuple[str, str]]:
    """
    Re-hash every file listed in a manifest.

    Parameters
    ----------
    path : Path
        Manifest file
    root : Path | None, default=None
        Directory the manifest paths are relative to, defaults to the
        directory holding the manifest

    Returns
    -------
    list[tuple[str, str]]
        (relative_path, problem) for every file that is missing, has the
        wrong size or the wrong checksum. Empty when everything matches.
    """
    manifest = read_manifest(path)
    root = root if root is not None else path.parent
    failures: list[tuple[str, str]] = []

    for record in manifest.records:
        target = root / record.relative_path
        if not target.is_file():
            failures.append((record.relative_path, "missing"))
            continue

        try:
            size = target.stat().st_size
        except OSError as e:
            failures.append((record.relative_path, f"unreadable: {e}"))
            continue
        if size != record.size_bytes:
            failures.append(
                (record.relative_path, f"size {size} != {record.size_bytes}")
            )
            continue

        try:
            actual = checksum(target, record.checksum_algorithm)
        except VerificationMismatch as e:
            failures.append((record.relative_path, str(e)))
            continue

        if checksums_match(actual, record.checksum):
            logger.info(f"✓ {record.relative_path}")
        else:
            logger.error(f"✗ {record.relative_path}: {actual} != {record.checksum}")
            failures.append(
                (record.relative_path, f"checksum {actual} != {record.checksum}")
            )

    return failures
