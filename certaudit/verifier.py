"""
Key-material consistency checks.

Every certificate, key and CSR in a server unit is compared pairwise by
public-key fingerprint. A server unit is OK only when at least one
comparison was possible and every comparison matched.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from .probe import CertificateArtifact, CsrArtifact, KeyArtifact


class ComparisonKind(Enum):
    """Which two artifact types a comparison covers."""
    CERT_KEY = "cert_key"
    CERT_CSR = "cert_csr"
    KEY_CSR = "key_csr"


class MatchReason(Enum):
    """Why a comparison passed or failed."""
    MATCH = "match"
    MISMATCH = "mismatch"
    UNEXTRACTABLE_FINGERPRINT = "unextractable_fingerprint"


class Verdict(Enum):
    """Final verdict for a server unit."""
    OK = "OK"
    NG = "NG"
    INSUFFICIENT = "INSUFFICIENT"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing two artifacts."""
    file_a: Path
    file_b: Path
    kind: ComparisonKind
    is_match: bool
    reason: MatchReason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_a": str(self.file_a),
            "file_b": str(self.file_b),
            "kind": self.kind.value,
            "is_match": self.is_match,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class VerificationSummary:
    """Aggregate of all comparisons for one server unit."""
    all_match: bool
    comparison_count: int
    verdict: Verdict


def compare_pair(a, b, kind: ComparisonKind) -> MatchResult:
    """
    Compare two artifacts by fingerprint.

    A missing fingerprint on either side is reported as
    UNEXTRACTABLE_FINGERPRINT, never as a mismatch.

    Args:
        a: First artifact (certificate, key or CSR)
        b: Second artifact
        kind: Comparison kind

    Returns:
        MatchResult
    """
    if a.fingerprint is None or b.fingerprint is None:
        return MatchResult(a.path, b.path, kind, False, MatchReason.UNEXTRACTABLE_FINGERPRINT)

    if a.fingerprint == b.fingerprint:
        return MatchResult(a.path, b.path, kind, True, MatchReason.MATCH)

    return MatchResult(a.path, b.path, kind, False, MatchReason.MISMATCH)


def cross_compare(
    certs: Sequence[CertificateArtifact],
    keys: Sequence[KeyArtifact],
    csrs: Sequence[CsrArtifact],
) -> List[MatchResult]:
    """
    Compare every cert/key, cert/CSR and key/CSR pair.

    Produces ``len(certs)*len(keys) + len(certs)*len(csrs) + len(keys)*len(csrs)``
    results, in that order.

    Args:
        certs: Certificate artifacts
        keys: Key artifacts
        csrs: CSR artifacts

    Returns:
        List of MatchResult
    """
    results = []

    for cert in certs:
        for key in keys:
            results.append(compare_pair(cert, key, ComparisonKind.CERT_KEY))

    for cert in certs:
        for csr in csrs:
            results.append(compare_pair(cert, csr, ComparisonKind.CERT_CSR))

    for key in keys:
        for csr in csrs:
            results.append(compare_pair(key, csr, ComparisonKind.KEY_CSR))

    return results


def summarize(results: Iterable[MatchResult]) -> VerificationSummary:
    """
    Reduce comparison results to a verdict.

    Zero comparisons is INSUFFICIENT (never OK); any failed comparison,
    mismatch or unextractable fingerprint, is NG.

    Args:
        results: Comparison results for one server unit

    Returns:
        VerificationSummary
    """
    results = list(results)
    count = len(results)

    if count == 0:
        return VerificationSummary(all_match=False, comparison_count=0, verdict=Verdict.INSUFFICIENT)

    all_match = all(r.is_match for r in results)
    return VerificationSummary(
        all_match=all_match,
        comparison_count=count,
        verdict=Verdict.OK if all_match else Verdict.NG,
    )
