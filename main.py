#!/usr/bin/env python3
"""
Certificate Audit - Main Entry Point.

Audits certificate, private key and CSR sets stored per organization and
server, checks that each set shares one key pair, and resolves missing
intermediate certificates.

Usage:
    # Audit the new tree (default task)
    python main.py --root ./new

    # Audit both trees, using a config file and JSON output
    python main.py --config config.yaml --include-old --json-summary

    # Find the intermediate for a certificate
    python main.py --task chain --cert ./new/acme/www/server.crt --chain-dir ./ca

    # Build a fullchain file
    python main.py --task merge --cert server.crt --output fullchain.pem
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from certaudit.audit import audit_tree, passphrase_env_path
from certaudit.chain import (
    ChainStatus,
    ResolutionStatus,
    classify_chain_completeness,
    find_chain_candidates,
    merge_chain_files,
    resolve_intermediate,
)
from certaudit.config_loader import Config, ConfigurationError, load_config
from certaudit.engine import ENGINES, CryptoEngineError, create_engine
from certaudit.helpers import format_expiration_status
from certaudit.logger import get_logger, setup_logger
from certaudit.notification import NotificationContext, NotificationManager
from certaudit.probe import CryptoProbe, ProbeError
from certaudit.report import AuditReport, ServerReport
from certaudit.verifier import MatchReason
from certaudit.walker import ScanRootError


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Certificate / private key / CSR consistency audit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --root ./new                         # Audit one tree
  %(prog)s --include-old --json-summary         # Audit new and old trees
  %(prog)s --task chain --cert server.crt --chain-dir ./ca
  %(prog)s --task merge --cert server.crt --output fullchain.pem
        """,
    )

    parser.add_argument(
        "--task",
        type=str,
        choices=["verify", "chain", "merge"],
        default="verify",
        help="Task: 'verify' audits a tree, 'chain' resolves an intermediate, "
             "'merge' writes a fullchain file (default: verify)",
    )

    # Verify options
    parser.add_argument(
        "--root",
        type=str,
        help="Verify: tree to audit (overrides trees.new_root)",
    )
    parser.add_argument(
        "--old-root",
        type=str,
        help="Old tree, searched for passphrases (overrides trees.old_root)",
    )
    parser.add_argument(
        "--include-old",
        action="store_true",
        help="Verify: also audit the old tree",
    )
    parser.add_argument(
        "--passphrase-file",
        type=str,
        help="Explicit passphrase file, tried after the server directory's own",
    )

    # Chain / merge options
    parser.add_argument(
        "--cert",
        type=str,
        help="Chain/merge: leaf certificate file",
    )
    parser.add_argument(
        "--chain-dir",
        type=str,
        action="append",
        default=None,
        help="Chain/merge: directory or file to search for intermediates (repeatable)",
    )
    parser.add_argument(
        "--intermediate",
        type=str,
        help="Merge: intermediate certificate (resolved automatically when omitted)",
    )
    parser.add_argument(
        "--root-cert",
        type=str,
        help="Merge: optional root certificate appended last",
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Merge: output file for the merged chain",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Merge: replace the output file if it exists",
    )
    parser.add_argument(
        "--force-merge",
        action="store_true",
        help="Merge: append the chain even if the certificate already holds one",
    )

    # Common options
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: built-in defaults)",
    )
    parser.add_argument(
        "--engine",
        type=str,
        choices=list(ENGINES),
        default=None,
        help="Crypto engine (overrides settings.engine)",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        help="Override expiry warning threshold (days)",
    )
    parser.add_argument(
        "--notify",
        action="store_true",
        help="Verify: send the configured notifications",
    )
    parser.add_argument(
        "--json-summary",
        action="store_true",
        help="Output machine-readable JSON at the end of execution",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write the log to this file",
    )

    args = parser.parse_args(argv)

    if args.task in ("chain", "merge") and not args.cert:
        parser.error(f"--task {args.task} requires --cert")
    if args.task == "merge" and not args.output:
        parser.error("--task merge requires --output")

    return args


def print_server_report(server: ServerReport, threshold_days: int) -> None:
    """
    Print the detail block for one server unit.

    Args:
        server: Server report
        threshold_days: Expiry warning threshold
    """
    logger = get_logger()
    logger.info("")
    logger.info(f"  {server.label}  ({server.path})")

    for cert in server.certificates:
        if cert.error:
            logger.error(f"      CERT {cert.path.name}: {cert.error}")
            continue
        fmt = cert.format.value if cert.format else "?"
        logger.info(f"      CERT {cert.path.name} [{fmt}, {cert.block_count} block(s)]")
        if cert.subject:
            logger.info(f"           subject: {cert.subject}")
            logger.info(f"           issuer:  {cert.issuer}")
        if cert.not_after:
            logger.info(
                f"           expires: {cert.not_after:%Y-%m-%d} "
                f"({format_expiration_status(cert.not_after, threshold_days)})"
            )
        if cert.has_embedded_private_key:
            logger.warning("           contains an embedded private key")

    for key in server.keys:
        if key.error:
            logger.error(f"      KEY  {key.path.name}: {key.error}")
        else:
            encrypted = ", encrypted" if key.is_encrypted else ""
            logger.info(f"      KEY  {key.path.name} [{key.key_type}{encrypted}]")

    for csr in server.csrs:
        if csr.error:
            logger.error(f"      CSR  {csr.path.name}: {csr.error}")
        else:
            logger.info(f"      CSR  {csr.path.name} subject: {csr.subject}")

    for path in server.chain_files:
        logger.info(f"      CHAIN {path.name}")

    for result in server.results:
        line = f"      {result.kind.value:<8} {result.file_a.name} <-> {result.file_b.name}: "
        if result.is_match:
            logger.info(line + "match")
        elif result.reason == MatchReason.UNEXTRACTABLE_FINGERPRINT:
            logger.error(line + "UNEXTRACTABLE FINGERPRINT")
        else:
            logger.error(line + "MISMATCH")

    for entry in server.chain:
        if entry.resolution is None:
            if entry.status == ChainStatus.FULLCHAIN_GUESS:
                logger.info(f"      chain: {entry.certificate.name} carries its chain")
            elif entry.status != ChainStatus.SINGLE_CERT_NEEDS_MERGE:
                logger.info(f"      chain: {entry.certificate.name} {entry.status.value}")
        elif entry.resolution.is_resolved:
            logger.info(f"      chain: {entry.resolution.message}")
        else:
            logger.warning(f"      chain: {entry.resolution.message}")

    for warning in server.expiry_warnings:
        logger.warning(f"      expiry: {warning}")

    logger.verdict(f"{server.label} ({server.summary.comparison_count} comparison(s))", server.verdict.value)


def print_audit_report(report: AuditReport, threshold_days: int) -> None:
    """
    Print the full audit report for one tree.

    Args:
        report: Finished audit report
        threshold_days: Expiry warning threshold
    """
    logger = get_logger()
    separator = "=" * 70

    logger.info("")
    logger.info(separator)
    logger.info(f"AUDIT REPORT: {report.tree} tree ({report.root})")
    logger.info(separator)

    for org in report.orgs:
        logger.info("")
        logger.info("-" * 40)
        logger.info(f"ORG {org.name}")
        logger.info("-" * 40)
        for server in org.servers:
            print_server_report(server, threshold_days)

    if report.global_errors:
        logger.info("")
        for error in report.global_errors:
            logger.error(f"  - {error}")

    logger.info("")
    logger.info(f"  Server units:      {report.total_servers}")
    logger.info(f"  OK:                {report.ok_count}")
    logger.info(f"  NG:                {report.ng_count}")
    logger.info(f"  Insufficient data: {report.insufficient_count}")
    logger.info(separator)


def run_verify(args: argparse.Namespace, config: Config, probe: CryptoProbe) -> List[AuditReport]:
    """
    Audit the configured tree(s).

    Returns:
        One report per audited tree
    """
    settings = config.settings
    new_root = Path(args.root or config.trees.new_root)
    old_root_value = args.old_root or config.trees.old_root
    old_root = Path(old_root_value) if old_root_value else None
    env_path = passphrase_env_path(settings.passphrase_env_var)

    trees = [("new", new_root)]
    if args.include_old:
        if old_root is None:
            raise ConfigurationError("--include-old requires an old tree (--old-root or trees.old_root)")
        trees.append(("old", old_root))

    reports = []
    for label, root in trees:
        report = audit_tree(
            root,
            probe=probe,
            settings=settings,
            label=label,
            old_root=old_root if old_root and old_root.is_dir() else None,
            override_path=args.passphrase_file,
            env_path=env_path,
        )
        reports.append(report)

    return reports


def run_chain(args: argparse.Namespace, config: Config, probe: CryptoProbe):
    """
    Resolve the intermediate for ``--cert``.

    Returns:
        Tuple of (probed leaf, ChainResolution or None when the leaf carries its chain)
    """
    logger = get_logger()
    leaf = probe.probe_certificate(args.cert)
    status = classify_chain_completeness(leaf)
    logger.info(f"{leaf.path.name}: {status.value}")

    if status != ChainStatus.SINGLE_CERT_NEEDS_MERGE:
        return leaf, None

    search_roots = args.chain_dir or [str(leaf.path.parent)]
    search_roots = list(search_roots) + list(config.settings.chain_search_roots)
    candidates = find_chain_candidates(search_roots, config.settings.chain_name_patterns, probe)
    resolution = resolve_intermediate(leaf, candidates)

    if resolution.is_resolved:
        logger.success(resolution.message)
    else:
        logger.failure(resolution.message)
        for candidate in resolution.tried:
            logger.info(f"    tried: {candidate.intermediate_path} ({candidate.subject_normalized})")

    return leaf, resolution


def run_merge(args: argparse.Namespace, config: Config, probe: CryptoProbe) -> bool:
    """
    Write leaf + intermediate (+ root) to ``--output``.

    Returns:
        True if the output file was written
    """
    logger = get_logger()
    output = Path(args.output)

    if output.exists() and not args.overwrite:
        logger.failure(f"Output file exists, use --overwrite to replace it: {output}")
        return False

    if args.intermediate:
        leaf = probe.probe_certificate(args.cert)
        intermediate = probe.probe_certificate(args.intermediate)
    else:
        leaf, resolution = run_chain(args, config, probe)
        if resolution is None and classify_chain_completeness(leaf) != ChainStatus.FULLCHAIN_GUESS:
            logger.failure(f"{leaf.path.name} is not PEM; convert it before merging")
            return False
        elif resolution is None:
            intermediate = None
        elif not resolution.is_resolved:
            return False
        else:
            intermediate = resolution.intermediate

    skip = config.settings.skip_if_already_merged and not args.force_merge
    if intermediate is None:
        if not skip:
            logger.failure(f"{leaf.path.name} already holds a chain; pass --intermediate to force a merge")
            return False
        # Already merged: output is the normalized leaf
        intermediate = leaf

    root = probe.probe_certificate(args.root_cert) if args.root_cert else None
    merged = merge_chain_files(leaf, intermediate, root, skip_if_already_merged=skip)

    with open(output, "wb") as f:
        f.write(merged)

    written = probe.probe_certificate(output)
    logger.success(
        f"Wrote {output} ({written.block_count} certificate block(s), "
        f"{classify_chain_completeness(written).value})"
    )
    return True


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Exit Codes:
        0 - Success
        1 - NG server units, unresolved chain or fatal error
        2 - Configuration error

    Returns:
        Exit code
    """
    args = parse_arguments(argv)

    logger = setup_logger(
        verbose=args.verbose,
        use_colors=not args.no_color,
        log_file=args.log_file,
    )

    logger.info("Certificate Audit")
    logger.info("=" * 50)

    exit_code = 0
    json_output = None

    try:
        config = load_config(args.config)

        if args.engine:
            config.settings.engine = args.engine
        if args.threshold is not None:
            config.settings.expiration_threshold_days = args.threshold
            logger.info(f"Expiry threshold overridden to {args.threshold} days")

        engine = create_engine(
            config.settings.engine,
            openssl_path=config.settings.openssl_path,
            timeout=config.settings.openssl_timeout,
        )
        logger.info(f"Crypto engine: {engine.name}")
        probe = CryptoProbe(engine)

        if args.task == "verify":
            reports = run_verify(args, config, probe)
            notification_manager = NotificationManager(config.notifications)

            for report in reports:
                print_audit_report(report, config.settings.expiration_threshold_days)
                if not report.success:
                    exit_code = 1
                if args.notify and notification_manager.is_enabled():
                    notification_manager.notify(NotificationContext.from_report(report))

            json_output = {"reports": [r.to_dict() for r in reports]}

        elif args.task == "chain":
            leaf, resolution = run_chain(args, config, probe)
            if resolution is not None and resolution.status != ResolutionStatus.MATCHED:
                exit_code = 1
            json_output = {
                "certificate": str(leaf.path),
                "status": classify_chain_completeness(leaf).value,
                "resolution": resolution.to_dict() if resolution else None,
            }

        else:
            if not run_merge(args, config, probe):
                exit_code = 1

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        exit_code = 2

    except (ScanRootError, CryptoEngineError, ProbeError, ValueError, OSError) as e:
        logger.error(f"Fatal error: {e}")
        exit_code = 1
        if args.verbose:
            import traceback
            traceback.print_exc()

    if exit_code == 0:
        print("PIPELINE_STATUS=SUCCESS")
    else:
        print("PIPELINE_STATUS=FAILURE")

    if args.json_summary and json_output is not None:
        logger.info("--- BEGIN JSON SUMMARY ---")
        print(json.dumps(json_output, indent=2))
        logger.info("--- END JSON SUMMARY ---")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
