"""
Certificate chain resolution.

Finds intermediate certificates for a leaf, classifies whether a file
already carries its chain, and builds fullchain PEM files.

Intermediate selection is strict: the leaf's issuer and the candidate's
subject must be identical in RFC 4514 form, and exactly one candidate may
match. Ambiguous and missing matches are returned to the caller rather
than guessed, since picking the wrong intermediate silently merges
certificates across organizations.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .helpers import (
    CERTIFICATE_LABEL,
    count_certificate_blocks,
    matches_any_pattern,
    normalize_pem_text,
)
from .logger import get_logger
from .probe import CertFormat, CertificateArtifact, CryptoProbe, UnsupportedFormatError


PemInput = Union[bytes, str]


class ChainStatus(Enum):
    """Chain completeness of a certificate file, judged by block count."""
    FULLCHAIN_GUESS = "fullchain_guess"
    SINGLE_CERT_NEEDS_MERGE = "single_cert_needs_merge"
    UNKNOWN_PKCS7 = "unknown_pkcs7"
    UNKNOWN_DER = "unknown_der"


class ResolutionStatus(Enum):
    """Outcome of intermediate resolution."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class ChainCandidate:
    """A candidate intermediate as seen by the matcher."""
    intermediate_path: Path
    subject_normalized: str


@dataclass
class ChainResolution:
    """Result of resolving the intermediate for one leaf certificate."""
    status: ResolutionStatus
    leaf_path: Path
    leaf_issuer: str
    intermediate: Optional[CertificateArtifact] = None
    matches: List[ChainCandidate] = field(default_factory=list)
    tried: List[ChainCandidate] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        return self.status == ResolutionStatus.MATCHED

    @property
    def message(self) -> str:
        """Operator-facing description of the outcome."""
        if self.status == ResolutionStatus.MATCHED:
            return f"Intermediate for {self.leaf_path.name}: {self.intermediate.path}"
        if self.status == ResolutionStatus.AMBIGUOUS:
            paths = ", ".join(str(m.intermediate_path) for m in self.matches)
            return (
                f"Ambiguous intermediate for {self.leaf_path.name}: "
                f"{len(self.matches)} candidates have subject '{self.leaf_issuer}' ({paths}). "
                "Specify the intermediate explicitly"
            )
        return (
            f"No intermediate found for {self.leaf_path.name}: issuer '{self.leaf_issuer}' "
            f"matched none of {len(self.tried)} candidate(s)"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value.upper(),
            "leaf": str(self.leaf_path),
            "leaf_issuer": self.leaf_issuer,
            "intermediate": str(self.intermediate.path) if self.intermediate else None,
            "matches": [str(m.intermediate_path) for m in self.matches],
            "tried": [str(t.intermediate_path) for t in self.tried],
            "message": self.message,
        }


def find_chain_candidates(
    search_roots: Iterable[Union[str, Path]],
    name_patterns: Iterable[str],
    probe: CryptoProbe,
) -> List[CertificateArtifact]:
    """
    Gather candidate intermediate/root certificates.

    Directories are listed (not recursively) and files are selected by
    name glob only; a search root that is itself a file is always taken.
    Selected files are then probed, and files that do not yield a subject
    are skipped.

    Args:
        search_roots: Directories (or files) to look in, in order
        name_patterns: Filename globs, e.g. ``*chain*`` or ``*intermediate*.crt``
        probe: CryptoProbe used to read each candidate

    Returns:
        Probed candidates in discovery order, without duplicates
    """
    logger = get_logger()
    patterns = list(name_patterns)
    seen = set()
    candidates = []

    for root in search_roots:
        root = Path(root)
        if root.is_file():
            paths = [root]
        elif root.is_dir():
            paths = [
                p for p in sorted(root.iterdir())
                if p.is_file() and matches_any_pattern(p.name, patterns)
            ]
        else:
            logger.debug(f"Chain search root not found, skipping: {root}")
            continue

        for path in paths:
            key = path.resolve()
            if key in seen:
                continue
            seen.add(key)

            artifact = probe.probe_certificate_safe(path)
            if artifact.error or artifact.subject is None:
                logger.debug(f"Not usable as chain candidate: {path}")
                continue
            candidates.append(artifact)

    logger.debug(f"Found {len(candidates)} chain candidate(s)")
    return candidates


def resolve_intermediate(
    leaf: CertificateArtifact,
    candidates: Iterable[CertificateArtifact],
) -> ChainResolution:
    """
    Select the intermediate whose subject equals the leaf's issuer.

    Args:
        leaf: Probed leaf certificate
        candidates: Probed candidate certificates

    Returns:
        ChainResolution: MATCHED with the single match, AMBIGUOUS listing
        every match, or NO_MATCH listing every candidate tried

    Raises:
        ValueError: If the leaf has no readable issuer
    """
    if leaf.issuer is None:
        raise ValueError(f"Certificate {leaf.path} has no readable issuer")

    leaf_issuer = leaf.issuer_normalized
    leaf_key = leaf.path.resolve()

    tried: List[ChainCandidate] = []
    matched: List[CertificateArtifact] = []
    seen = set()

    for candidate in candidates:
        key = candidate.path.resolve()
        if key == leaf_key or key in seen or candidate.subject is None:
            continue
        seen.add(key)

        entry = ChainCandidate(
            intermediate_path=candidate.path,
            subject_normalized=candidate.subject_normalized,
        )
        tried.append(entry)
        if entry.subject_normalized == leaf_issuer:
            matched.append(candidate)

    matches = [ChainCandidate(m.path, m.subject_normalized) for m in matched]

    if len(matched) == 1:
        return ChainResolution(
            status=ResolutionStatus.MATCHED,
            leaf_path=leaf.path,
            leaf_issuer=leaf_issuer,
            intermediate=matched[0],
            matches=matches,
            tried=tried,
        )

    status = ResolutionStatus.AMBIGUOUS if matched else ResolutionStatus.NO_MATCH
    return ChainResolution(
        status=status,
        leaf_path=leaf.path,
        leaf_issuer=leaf_issuer,
        matches=matches,
        tried=tried,
    )


def classify_chain_completeness(cert: CertificateArtifact) -> ChainStatus:
    """
    Classify a certificate file by how many certificates it carries.

    Two or more PEM blocks is a fullchain guess; this is a heuristic, not
    a chain-of-trust validation. DER and PKCS7 files cannot be judged by
    block count.

    Raises:
        ValueError: If the certificate could not be probed
    """
    if cert.format == CertFormat.PKCS7:
        return ChainStatus.UNKNOWN_PKCS7
    if cert.format == CertFormat.DER:
        return ChainStatus.UNKNOWN_DER
    if cert.format == CertFormat.PEM:
        if cert.block_count >= 2:
            return ChainStatus.FULLCHAIN_GUESS
        return ChainStatus.SINGLE_CERT_NEEDS_MERGE
    raise ValueError(f"Cannot classify unprobed certificate {cert.path}: {cert.error}")


def is_issuing_certificate(cert: CertificateArtifact, others: Iterable[CertificateArtifact]) -> bool:
    """
    Check if a certificate is an issuer rather than a server certificate.

    A certificate is an issuer when BasicConstraints marks it as a CA, or
    when its subject is the issuer of another certificate in ``others``.
    Unprobed and PKCS7 files, which have no subject, count as issuers.

    Args:
        cert: Probed certificate
        others: Certificates found next to it

    Returns:
        True if the certificate should be treated as chain material
    """
    if cert.error or cert.subject is None:
        return True
    if cert.is_ca:
        return True

    subject = cert.subject_normalized
    return any(
        other is not cert and other.issuer_normalized == subject
        for other in others
    )


def _pem_text(data: PemInput, role: str) -> str:
    text = data.decode("utf-8", errors="ignore") if isinstance(data, bytes) else data
    if count_certificate_blocks(text) == 0:
        raise UnsupportedFormatError(f"The {role} certificate is not PEM ({CERTIFICATE_LABEL} block missing)")
    return text


def merge_chain(
    leaf: PemInput,
    intermediate: PemInput,
    root: Optional[PemInput] = None,
    skip_if_already_merged: bool = True,
) -> bytes:
    """
    Concatenate leaf, intermediate and optional root into one PEM file.

    Each part is normalized (LF line endings, trimmed) before joining.
    With ``skip_if_already_merged``, a leaf that already holds two or more
    certificates is returned as-is apart from line-ending normalization.

    Args:
        leaf: Leaf certificate PEM
        intermediate: Intermediate certificate PEM
        root: Optional root certificate PEM
        skip_if_already_merged: Return a multi-block leaf unchanged

    Returns:
        Merged PEM bytes

    Raises:
        UnsupportedFormatError: If any input holds no PEM certificate
    """
    leaf_text = _pem_text(leaf, "leaf")

    if skip_if_already_merged and count_certificate_blocks(leaf_text) >= 2:
        get_logger().debug("Leaf already carries a chain, not merging")
        return normalize_pem_text(leaf_text).encode("utf-8")

    parts = [normalize_pem_text(leaf_text), normalize_pem_text(_pem_text(intermediate, "intermediate"))]
    if root is not None:
        parts.append(normalize_pem_text(_pem_text(root, "root")))

    return "".join(parts).encode("utf-8")


def merge_chain_files(
    leaf: CertificateArtifact,
    intermediate: CertificateArtifact,
    root: Optional[CertificateArtifact] = None,
    skip_if_already_merged: bool = True,
) -> bytes:
    """
    Merge probed certificate files, reading their PEM text from disk.

    Raises:
        UnsupportedFormatError: If any file is not a PEM certificate
    """
    for artifact in (leaf, intermediate, root):
        if artifact is not None and artifact.format != CertFormat.PEM:
            raise UnsupportedFormatError(
                f"{artifact.path.name} is not a PEM certificate and cannot be merged"
            )

    def read(artifact: Optional[CertificateArtifact]) -> Optional[bytes]:
        if artifact is None:
            return None
        with open(artifact.path, "rb") as f:
            return f.read()

    return merge_chain(
        read(leaf),
        read(intermediate),
        read(root),
        skip_if_already_merged=skip_if_already_merged,
    )
