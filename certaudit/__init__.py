"""
Certificate, private key and CSR audit toolkit.

This package contains:
- engine: crypto engine boundary (cryptography or openssl binary)
- names: parsed distinguished names
- probe: certificate, key and CSR introspection
- chain: intermediate resolution, chain classification and merging
- verifier: pairwise key-material comparison
- walker: organization / server tree discovery and passphrase sources
- audit: orchestration of a full tree audit
- report: structured audit report
- config_loader: configuration loading and validation
- logger: centralized logging setup
- helpers: PEM text, file classification and expiry helpers
- notification: email and Teams notifications
"""

from .logger import setup_logger, get_logger
from .config_loader import (
    load_config,
    Config,
    Settings,
    TreesConfig,
    NotificationsConfig,
    ConfigurationError,
)
from .engine import (
    CryptoEngine,
    CryptographyEngine,
    OpenSSLEngine,
    create_engine,
    CryptoEngineError,
    DecryptError,
    EngineUnavailableError,
)
from .names import DistinguishedName
from .probe import (
    CryptoProbe,
    CertFormat,
    CertificateArtifact,
    KeyArtifact,
    CsrArtifact,
    ProbeError,
    UnreadableFileError,
    UnsupportedFormatError,
    NoUsablePassphraseError,
)
from .chain import (
    ChainStatus,
    ChainCandidate,
    ChainResolution,
    ResolutionStatus,
    find_chain_candidates,
    resolve_intermediate,
    classify_chain_completeness,
    is_issuing_certificate,
    merge_chain,
    merge_chain_files,
)
from .verifier import (
    ComparisonKind,
    MatchReason,
    MatchResult,
    Verdict,
    VerificationSummary,
    cross_compare,
    summarize,
)
from .walker import (
    OrgUnit,
    ServerUnit,
    ScanRootError,
    enumerate_orgs,
    enumerate_servers,
    resolve_passphrase_sources,
    load_passphrases,
)
from .audit import audit_tree, audit_server
from .report import AuditReport, OrgReport, ServerReport
from .notification import NotificationManager, NotificationContext

__all__ = [
    # Logger
    "setup_logger",
    "get_logger",
    # Config
    "load_config",
    "Config",
    "Settings",
    "TreesConfig",
    "NotificationsConfig",
    "ConfigurationError",
    # Engine
    "CryptoEngine",
    "CryptographyEngine",
    "OpenSSLEngine",
    "create_engine",
    "CryptoEngineError",
    "DecryptError",
    "EngineUnavailableError",
    # Probe
    "DistinguishedName",
    "CryptoProbe",
    "CertFormat",
    "CertificateArtifact",
    "KeyArtifact",
    "CsrArtifact",
    "ProbeError",
    "UnreadableFileError",
    "UnsupportedFormatError",
    "NoUsablePassphraseError",
    # Chain
    "ChainStatus",
    "ChainCandidate",
    "ChainResolution",
    "ResolutionStatus",
    "find_chain_candidates",
    "resolve_intermediate",
    "classify_chain_completeness",
    "is_issuing_certificate",
    "merge_chain",
    "merge_chain_files",
    # Verifier
    "ComparisonKind",
    "MatchReason",
    "MatchResult",
    "Verdict",
    "VerificationSummary",
    "cross_compare",
    "summarize",
    # Walker
    "OrgUnit",
    "ServerUnit",
    "ScanRootError",
    "enumerate_orgs",
    "enumerate_servers",
    "resolve_passphrase_sources",
    "load_passphrases",
    # Audit
    "audit_tree",
    "audit_server",
    "AuditReport",
    "OrgReport",
    "ServerReport",
    # Notifications
    "NotificationManager",
    "NotificationContext",
]
