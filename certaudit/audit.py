"""
Audit orchestration.

Walks a certificate tree, probes every file, resolves intermediates for
certificates without an embedded chain and cross-checks key material.
Per-file failures become rows in the report; only structural problems
(missing scan root, unusable crypto engine) abort the run.
"""

import os
from pathlib import Path
from typing import List, Optional, Union

from .chain import (
    ChainStatus,
    classify_chain_completeness,
    find_chain_candidates,
    is_issuing_certificate,
    resolve_intermediate,
)
from .config_loader import Settings
from .helpers import format_expiration_status, is_expiring_soon
from .logger import get_logger
from .probe import CryptoProbe
from .report import AuditReport, ChainEntry, OrgReport, ServerReport
from .verifier import cross_compare, summarize
from .walker import OrgUnit, ServerUnit, enumerate_orgs, load_passphrases, resolve_passphrase_sources


PathLike = Union[str, Path]


def passphrase_env_path(env_var: str) -> Optional[Path]:
    """
    Passphrase file named by an environment variable, if set.

    Args:
        env_var: Environment variable name

    Returns:
        Path or None when the variable is unset or empty
    """
    value = os.environ.get(env_var, "").strip()
    return Path(value) if value else None


def audit_server(
    org: OrgUnit,
    server: ServerUnit,
    *,
    probe: CryptoProbe,
    settings: Settings,
    scan_root: PathLike,
    old_root: Optional[PathLike] = None,
    override_path: Optional[PathLike] = None,
    env_path: Optional[PathLike] = None,
) -> ServerReport:
    """
    Audit a single server unit.

    Args:
        org: Organization the server belongs to
        server: Server unit to audit
        probe: CryptoProbe to read files with
        settings: Audit settings
        scan_root: Root of the tree being scanned
        old_root: Old tree root, consulted for passphrases
        override_path: Explicit passphrase file
        env_path: Passphrase file from the environment

    Returns:
        ServerReport with exactly one verdict
    """
    logger = get_logger()
    logger.subsection(f"{org.name}/{server.name}")

    certificates = [probe.probe_certificate_safe(p) for p in server.certificates]
    chain_artifacts = [probe.probe_certificate_safe(p) for p in server.chain_files]
    neighbours = certificates + chain_artifacts
    chain_files = []

    # A chain-like file name (fullchain.pem) does not make a leaf an intermediate.
    # Unreadable files stay with the certificates so their error is reported.
    for artifact in chain_artifacts:
        if artifact.error is None and is_issuing_certificate(artifact, neighbours):
            chain_files.append(artifact.path)
        else:
            logger.debug(f"{artifact.path.name}: server certificate, audited with the key material")
            certificates.append(artifact)
    certificates.sort(key=lambda a: a.path.name)

    csrs = [probe.probe_csr_safe(p) for p in server.csrs]

    passphrases: List[str] = []
    if server.keys:
        sources = resolve_passphrase_sources(
            server.path,
            scan_root=scan_root,
            org_path=org.path,
            override_path=override_path,
            old_root=old_root,
            env_path=env_path,
            filename=settings.passphrase_filename,
        )
        passphrases = load_passphrases(sources)
    candidate_count = len(passphrases)

    try:
        keys = [probe.probe_key_safe(p, passphrases) for p in server.keys]
    finally:
        passphrases.clear()

    results = cross_compare(certificates, keys, csrs)
    summary = summarize(results)

    report = ServerReport(
        org=org.name,
        server=server.name,
        path=server.path,
        summary=summary,
        certificates=certificates,
        keys=keys,
        csrs=csrs,
        chain_files=chain_files,
        results=results,
        passphrase_candidates=candidate_count,
    )

    search_roots = [server.path, org.path, Path(scan_root)] + [
        Path(p) for p in settings.chain_search_roots
    ]
    candidates = None

    for cert in certificates:
        if cert.error:
            continue

        status = classify_chain_completeness(cert)
        entry = ChainEntry(certificate=cert.path, status=status)

        if status == ChainStatus.SINGLE_CERT_NEEDS_MERGE and cert.issuer is not None:
            if candidates is None:
                candidates = find_chain_candidates(search_roots, settings.chain_name_patterns, probe)
            entry.resolution = resolve_intermediate(cert, candidates)
            logger.debug(entry.resolution.message)

        report.chain.append(entry)

        if cert.not_after and is_expiring_soon(cert.not_after, settings.expiration_threshold_days):
            warning = (
                f"{cert.path.name}: "
                f"{format_expiration_status(cert.not_after, settings.expiration_threshold_days)}"
            )
            report.expiry_warnings.append(warning)
            logger.warning(warning)

    for result in results:
        logger.debug(
            f"{result.kind.value}: {result.file_a.name} <-> {result.file_b.name}: {result.reason.value}"
        )

    logger.verdict(report.label, summary.verdict.value)
    return report


def audit_tree(
    root: PathLike,
    *,
    probe: CryptoProbe,
    settings: Settings,
    label: str = "new",
    old_root: Optional[PathLike] = None,
    override_path: Optional[PathLike] = None,
    env_path: Optional[PathLike] = None,
) -> AuditReport:
    """
    Audit every server unit under a scan root.

    Args:
        root: Scan root
        probe: CryptoProbe to read files with
        settings: Audit settings
        label: Tree label for the report ("new" or "old")
        old_root: Old tree root, consulted for passphrases
        override_path: Explicit passphrase file
        env_path: Passphrase file from the environment

    Returns:
        Finalized AuditReport, orgs and servers in name order

    Raises:
        ScanRootError: If the scan root does not exist
        EngineUnavailableError: If the crypto engine cannot run
    """
    logger = get_logger()
    root = Path(root)
    report = AuditReport(tree=label, root=root)

    logger.section(f"Auditing {label} tree: {root}")
    orgs = enumerate_orgs(root, settings.chain_name_patterns)

    if old_root is not None and Path(old_root).resolve() == root.resolve():
        old_root = None

    for org in orgs:
        org_report = OrgReport(name=org.name, path=org.path)
        for server in org.servers:
            org_report.servers.append(audit_server(
                org,
                server,
                probe=probe,
                settings=settings,
                scan_root=root,
                old_root=old_root,
                override_path=override_path,
                env_path=env_path,
            ))
        report.orgs.append(org_report)

    report.finalize()
    return report
