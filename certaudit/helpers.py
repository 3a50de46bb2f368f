"""
Common utility functions.

PEM text handling, file classification and expiry calculations shared by
the probe, chain and walker modules.
"""

import fnmatch
import re
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Union


# File extensions the audit looks at
TARGET_EXTENSIONS = (".cer", ".crt", ".pem", ".csr", ".key")

CERTIFICATE_LABEL = "CERTIFICATE"

_PEM_BLOCK_RE = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----.*?-----END (?P=label)-----",
    re.DOTALL,
)


class FileKind:
    """Kinds of files found in a server directory."""
    CERTIFICATE = "certificate"
    KEY = "key"
    CSR = "csr"


def is_target_file(path: Path) -> bool:
    """Check if a path is a regular file with an audited extension."""
    return path.is_file() and path.suffix.lower() in TARGET_EXTENSIONS


def has_target_files(directory: Path) -> bool:
    """Check if a directory directly contains any audited file."""
    return any(is_target_file(p) for p in directory.iterdir())


def matches_any_pattern(name: str, patterns: Iterable[str]) -> bool:
    """
    Case-insensitive filename glob match.

    Args:
        name: File name (not a path)
        patterns: Glob patterns such as ``*chain*.pem``

    Returns:
        True if any pattern matches
    """
    lowered = name.lower()
    return any(fnmatch.fnmatch(lowered, pattern.lower()) for pattern in patterns)


def read_head(path: Path, max_lines: int = 40) -> str:
    """
    Read the first lines of a file as text, ignoring undecodable bytes.

    Args:
        path: File to read
        max_lines: Number of lines to return

    Returns:
        The first ``max_lines`` lines joined with newlines
    """
    lines = []
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        for i, line in enumerate(f):
            if i >= max_lines:
                break
            lines.append(line.rstrip("\r\n"))
    return "\n".join(lines)


def classify_file_kind(path: Path) -> str:
    """
    Decide whether an audited file holds a certificate, key or CSR.

    ``.key`` and ``.csr`` are taken at their word; ``.cer``/``.crt`` are
    certificates. ``.pem`` is sniffed: a CSR marker wins, then a file with
    a private key and no certificate is a key, everything else is a
    certificate. A ``.pem`` that cannot be read is filed as a certificate
    so the probe reports it as unreadable.

    Args:
        path: File path

    Returns:
        One of the FileKind values
    """
    suffix = path.suffix.lower()
    if suffix == ".key":
        return FileKind.KEY
    if suffix == ".csr":
        return FileKind.CSR
    if suffix != ".pem":
        return FileKind.CERTIFICATE

    try:
        head = read_head(path, max_lines=200)
    except OSError:
        return FileKind.CERTIFICATE

    if "CERTIFICATE REQUEST-----" in head:
        return FileKind.CSR
    if "PRIVATE KEY-----" in head and f"BEGIN {CERTIFICATE_LABEL}-----" not in head:
        return FileKind.KEY
    return FileKind.CERTIFICATE


def normalize_line_endings(text: str) -> str:
    """Convert CRLF and bare CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def normalize_pem_text(text: str) -> str:
    """
    Normalize PEM text for concatenation.

    Line endings become LF, trailing whitespace is removed from every
    line, leading/trailing blank lines are dropped and the result ends
    with exactly one newline.

    Args:
        text: PEM text

    Returns:
        Normalized text (empty string stays empty)
    """
    lines = [line.rstrip() for line in normalize_line_endings(text).split("\n")]
    body = "\n".join(lines).strip()
    return f"{body}\n" if body else ""


def split_pem_blocks(text: str, label: Optional[str] = None) -> List[str]:
    """
    Extract complete PEM blocks from text.

    Args:
        text: PEM text, possibly holding several blocks
        label: Only return blocks with this label (e.g. "CERTIFICATE")

    Returns:
        List of block strings, BEGIN through END lines
    """
    blocks = []
    for match in _PEM_BLOCK_RE.finditer(normalize_line_endings(text)):
        if label is None or match.group("label") == label:
            blocks.append(match.group(0))
    return blocks


def count_certificate_blocks(text: str) -> int:
    """Count ``BEGIN CERTIFICATE`` markers; CSRs are not counted."""
    return text.count(f"-----BEGIN {CERTIFICATE_LABEL}-----")


def get_primary_name(common_name: Optional[str], san: List[str]) -> Optional[str]:
    """
    Get the display name for a certificate or CSR.

    The subject CN is preferred; without one, the first non-wildcard SAN,
    then the first SAN with its wildcard prefix removed.

    Args:
        common_name: Subject CN, if any
        san: Subject alternative names

    Returns:
        Primary name or None if nothing is available
    """
    if common_name:
        return common_name
    if not san:
        return None

    for name in san:
        if not name.startswith("*."):
            return name

    return san[0].replace("*.", "")


def is_expiring_soon(
    expires_on: Optional[datetime],
    threshold_days: int = 30,
) -> bool:
    """
    Check if a certificate is expired or expiring within the threshold.

    Args:
        expires_on: Expiration datetime (naive values are taken as UTC)
        threshold_days: Days before expiration to consider "soon"

    Returns:
        True if expired or expiring within threshold
    """
    if expires_on is None:
        return False

    if expires_on.tzinfo is None:
        expires_on = expires_on.replace(tzinfo=timezone.utc)

    threshold = datetime.now(timezone.utc) + timedelta(days=threshold_days)
    return expires_on <= threshold


def format_days_remaining(
    expires_on: Optional[datetime],
) -> Union[int, str]:
    """
    Calculate days remaining until expiration.

    Args:
        expires_on: Expiration datetime

    Returns:
        Days remaining (negative if expired), or "unknown"
    """
    if expires_on is None:
        return "unknown"

    if expires_on.tzinfo is None:
        expires_on = expires_on.replace(tzinfo=timezone.utc)

    return (expires_on - datetime.now(timezone.utc)).days


def format_expiration_status(
    expires_on: Optional[datetime],
    threshold_days: int = 30,
) -> str:
    """
    Format a human-readable expiration status.

    Args:
        expires_on: Expiration datetime
        threshold_days: Days threshold for "expiring" status

    Returns:
        Status string such as "Valid (120 days remaining)"
    """
    days = format_days_remaining(expires_on)

    if isinstance(days, str):
        return "Unknown expiration"

    if days < 0:
        return f"EXPIRED ({abs(days)} days ago)"
    elif days == 0:
        return "EXPIRES TODAY"
    elif days <= threshold_days:
        return f"EXPIRING in {days} day{'s' if days != 1 else ''}"
    else:
        return f"Valid ({days} days remaining)"
