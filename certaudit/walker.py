"""
Organization tree discovery.

Scan roots are laid out as ``<root>/<org>/<server>/`` with files such as
``server.crt``, ``server.key`` and ``server.csr``. Flat layouts are
supported through the synthetic ``(root)`` units:

- files directly under the scan root form a ``(root)`` org
- an org with files directly inside it, or with no subdirectories at all,
  gets a ``(root)`` server for the org directory itself
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .helpers import FileKind, classify_file_kind, has_target_files, is_target_file, matches_any_pattern
from .logger import get_logger


ROOT_UNIT_NAME = "(root)"
PASSPHRASE_FILENAME = "passphrase.txt"

PathLike = Union[str, Path]


class ScanRootError(Exception):
    """Raised when a scan root is missing or not a directory."""
    pass


@dataclass
class ServerUnit:
    """One server directory and the audited files directly inside it."""
    name: str
    path: Path
    certificates: List[Path] = field(default_factory=list)
    keys: List[Path] = field(default_factory=list)
    csrs: List[Path] = field(default_factory=list)
    chain_files: List[Path] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.certificates) + len(self.keys) + len(self.csrs) + len(self.chain_files)

    @property
    def is_empty(self) -> bool:
        return self.file_count == 0


@dataclass
class OrgUnit:
    """One organization directory and its server units."""
    name: str
    path: Path
    servers: List[ServerUnit] = field(default_factory=list)
    is_synthetic: bool = False


def _subdirectories(directory: Path) -> List[Path]:
    return sorted(
        (p for p in directory.iterdir() if p.is_dir() and not p.name.startswith(".")),
        key=lambda p: p.name,
    )


def scan_server_directory(
    name: str,
    path: Path,
    chain_patterns: Sequence[str] = (),
) -> ServerUnit:
    """
    Build a ServerUnit from the files directly inside ``path``.

    Certificates whose file names match ``chain_patterns`` are filed as
    chain files instead of server certificates.

    Args:
        name: Server unit name
        path: Directory to scan (not recursive)
        chain_patterns: Filename globs identifying chain/intermediate files

    Returns:
        ServerUnit with files sorted by name
    """
    unit = ServerUnit(name=name, path=path)

    for entry in sorted(path.iterdir(), key=lambda p: p.name):
        if not is_target_file(entry):
            continue

        kind = classify_file_kind(entry)
        if kind == FileKind.KEY:
            unit.keys.append(entry)
        elif kind == FileKind.CSR:
            unit.csrs.append(entry)
        elif chain_patterns and matches_any_pattern(entry.name, chain_patterns):
            unit.chain_files.append(entry)
        else:
            unit.certificates.append(entry)

    return unit


def enumerate_servers(
    org_path: PathLike,
    chain_patterns: Sequence[str] = (),
) -> List[ServerUnit]:
    """
    List the server units of an organization directory.

    Subdirectories are servers. The org directory itself becomes a
    ``(root)`` server when it has no subdirectories OR has audited files
    directly inside it; either condition is enough.

    Args:
        org_path: Organization directory
        chain_patterns: Filename globs identifying chain files

    Returns:
        ``(root)`` first if present, then servers sorted by name
    """
    org_path = Path(org_path)
    subdirs = _subdirectories(org_path)
    servers = []

    if not subdirs or has_target_files(org_path):
        servers.append(scan_server_directory(ROOT_UNIT_NAME, org_path, chain_patterns))

    for subdir in subdirs:
        servers.append(scan_server_directory(subdir.name, subdir, chain_patterns))

    return servers


def enumerate_orgs(
    root_dir: PathLike,
    chain_patterns: Sequence[str] = (),
) -> List[OrgUnit]:
    """
    List the organizations under a scan root.

    Args:
        root_dir: Scan root
        chain_patterns: Filename globs identifying chain files

    Returns:
        ``(root)`` org first if the root directly holds audited files,
        then orgs sorted by name, each with its server units

    Raises:
        ScanRootError: If the scan root does not exist
    """
    logger = get_logger()
    root = Path(root_dir)

    if not root.is_dir():
        raise ScanRootError(f"Scan root not found or not a directory: {root}")

    orgs = []

    if has_target_files(root):
        orgs.append(OrgUnit(
            name=ROOT_UNIT_NAME,
            path=root,
            servers=[scan_server_directory(ROOT_UNIT_NAME, root, chain_patterns)],
            is_synthetic=True,
        ))

    for subdir in _subdirectories(root):
        orgs.append(OrgUnit(
            name=subdir.name,
            path=subdir,
            servers=enumerate_servers(subdir, chain_patterns),
        ))

    logger.debug(
        f"{root}: {len(orgs)} org(s), {sum(len(o.servers) for o in orgs)} server unit(s)"
    )
    return orgs


def resolve_passphrase_sources(
    server_path: PathLike,
    *,
    scan_root: PathLike,
    org_path: PathLike,
    override_path: Optional[PathLike] = None,
    old_root: Optional[PathLike] = None,
    env_path: Optional[PathLike] = None,
    filename: str = PASSPHRASE_FILENAME,
) -> List[Path]:
    """
    Ordered list of passphrase files to consult for one server unit.

    Pure path arithmetic: nothing is read and existence is not checked.
    Order: server directory, explicit override, org directory, scan root,
    the same org in the old tree, the old tree root, then the
    environment-supplied file. Duplicates keep their first position.

    Args:
        server_path: Server unit directory
        scan_root: Root of the tree being scanned
        org_path: Organization directory (equal to scan_root for ``(root)``)
        override_path: Explicit passphrase file
        old_root: Root of the old tree, for keys protected with old passwords
        env_path: Passphrase file named by the environment
        filename: Passphrase file name at each directory level

    Returns:
        List of candidate paths
    """
    server_path = Path(server_path)
    scan_root = Path(scan_root)
    org_path = Path(org_path)

    candidates: List[Optional[Path]] = [
        server_path / filename,
        Path(override_path) if override_path else None,
        org_path / filename,
        scan_root / filename,
    ]

    if old_root:
        old_root = Path(old_root)
        try:
            relative_org = org_path.relative_to(scan_root)
        except ValueError:
            relative_org = None
        if relative_org is not None:
            candidates.append(old_root / relative_org / filename)
        candidates.append(old_root / filename)

    candidates.append(Path(env_path) if env_path else None)

    ordered = []
    seen = set()
    for candidate in candidates:
        if candidate is None:
            continue
        key = os.path.normpath(str(candidate))
        if key in seen:
            continue
        seen.add(key)
        ordered.append(candidate)

    return ordered


def load_passphrases(paths: Iterable[PathLike]) -> List[str]:
    """
    Read candidate passphrases from every existing source.

    Each non-blank line is one candidate. Candidates keep source order and
    duplicates are dropped. Unreadable files are logged and skipped.

    Args:
        paths: Passphrase files, in precedence order

    Returns:
        List of passphrases
    """
    logger = get_logger()
    passphrases: List[str] = []

    for path in paths:
        path = Path(path)
        if not path.is_file():
            continue

        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read passphrase file {path}: {e}")
            continue

        for line in lines:
            if line.strip() and line not in passphrases:
                passphrases.append(line)

        logger.debug(f"Passphrase source: {path}")

    return passphrases
