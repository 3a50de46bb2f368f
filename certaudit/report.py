"""
Structured audit report.

Plain data consumed by the text renderer in main.py, the JSON summary and
the notification channels.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .chain import ChainResolution, ChainStatus
from .helpers import format_days_remaining
from .probe import CertificateArtifact, CsrArtifact, KeyArtifact
from .verifier import MatchResult, Verdict, VerificationSummary


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def certificate_to_dict(cert: CertificateArtifact) -> Dict[str, Any]:
    return {
        "path": str(cert.path),
        "format": cert.format.value if cert.format else None,
        "block_count": cert.block_count,
        "subject": cert.subject_normalized,
        "issuer": cert.issuer_normalized,
        "not_after": _isoformat(cert.not_after),
        "days_remaining": format_days_remaining(cert.not_after),
        "fingerprint": cert.fingerprint,
        "has_embedded_private_key": cert.has_embedded_private_key,
        "san": list(cert.san),
        "error": cert.error,
    }


def key_to_dict(key: KeyArtifact) -> Dict[str, Any]:
    return {
        "path": str(key.path),
        "is_encrypted": key.is_encrypted,
        "key_type": key.key_type,
        "fingerprint": key.fingerprint,
        "error": key.error,
    }


def csr_to_dict(csr: CsrArtifact) -> Dict[str, Any]:
    return {
        "path": str(csr.path),
        "subject": csr.subject.normalized if csr.subject else None,
        "fingerprint": csr.fingerprint,
        "san": list(csr.san),
        "error": csr.error,
    }


@dataclass
class ChainEntry:
    """Chain status of one server certificate."""
    certificate: Path
    status: ChainStatus
    resolution: Optional[ChainResolution] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificate": str(self.certificate),
            "status": self.status.value,
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


@dataclass
class ServerReport:
    """Audit outcome for one server unit."""
    org: str
    server: str
    path: Path
    summary: VerificationSummary
    certificates: List[CertificateArtifact] = field(default_factory=list)
    keys: List[KeyArtifact] = field(default_factory=list)
    csrs: List[CsrArtifact] = field(default_factory=list)
    chain_files: List[Path] = field(default_factory=list)
    results: List[MatchResult] = field(default_factory=list)
    chain: List[ChainEntry] = field(default_factory=list)
    expiry_warnings: List[str] = field(default_factory=list)
    passphrase_candidates: int = 0

    @property
    def label(self) -> str:
        return f"{self.org}/{self.server}"

    @property
    def verdict(self) -> Verdict:
        return self.summary.verdict

    @property
    def errors(self) -> List[str]:
        """Per-artifact probe errors, in file order."""
        artifacts = list(self.certificates) + list(self.keys) + list(self.csrs)
        return [a.error for a in artifacts if a.error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "org": self.org,
            "server": self.server,
            "path": str(self.path),
            "verdict": self.verdict.value,
            "all_match": self.summary.all_match,
            "comparison_count": self.summary.comparison_count,
            "certificates": [certificate_to_dict(c) for c in self.certificates],
            "keys": [key_to_dict(k) for k in self.keys],
            "csrs": [csr_to_dict(c) for c in self.csrs],
            "chain_files": [str(p) for p in self.chain_files],
            "comparisons": [r.to_dict() for r in self.results],
            "chain": [c.to_dict() for c in self.chain],
            "expiry_warnings": self.expiry_warnings,
            "errors": self.errors,
        }


@dataclass
class OrgReport:
    """Audit outcome for one organization."""
    name: str
    path: Path
    servers: List[ServerReport] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "servers": [s.to_dict() for s in self.servers],
        }


@dataclass
class AuditReport:
    """Complete audit of one certificate tree."""
    tree: str
    root: Path
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    completed_at: Optional[str] = None
    orgs: List[OrgReport] = field(default_factory=list)
    global_errors: List[str] = field(default_factory=list)

    @property
    def servers(self) -> List[ServerReport]:
        return [server for org in self.orgs for server in org.servers]

    def count(self, verdict: Verdict) -> int:
        return sum(1 for server in self.servers if server.verdict == verdict)

    @property
    def total_servers(self) -> int:
        return len(self.servers)

    @property
    def ok_count(self) -> int:
        return self.count(Verdict.OK)

    @property
    def ng_count(self) -> int:
        return self.count(Verdict.NG)

    @property
    def insufficient_count(self) -> int:
        return self.count(Verdict.INSUFFICIENT)

    @property
    def success(self) -> bool:
        """No NG server unit and no run-level error."""
        return self.ng_count == 0 and not self.global_errors

    def add_global_error(self, error: str) -> None:
        self.global_errors.append(error)

    def finalize(self) -> None:
        """Mark the audit as complete."""
        self.completed_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tree": self.tree,
            "root": str(self.root),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "success": self.success,
            "summary": {
                "total_servers": self.total_servers,
                "ok": self.ok_count,
                "ng": self.ng_count,
                "insufficient": self.insufficient_count,
            },
            "orgs": [o.to_dict() for o in self.orgs],
            "global_errors": self.global_errors,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)
