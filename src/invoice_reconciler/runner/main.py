"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..drive_client import DriveClient
from ..schemas import Scope
from ..services import ScanOptions, ScanService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _add_scope_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--user",
        type=int,
        required=True,
        help="Owning user ID",
    )
    parser.add_argument(
        "--company",
        type=int,
        default=None,
        help="Company ID (omit for the personal scope)",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="invoice-reconciler",
        description="Scan Drive invoice folders and reconcile invoices with bank transactions",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Scan Drive and match new invoices")
    _add_scope_arguments(scan_parser)
    scan_parser.add_argument(
        "--force",
        action="store_true",
        help="Clear this scope's cached invoices and re-scan everything",
    )
    scan_parser.add_argument(
        "--folder",
        type=str,
        default=None,
        help="Drive folder ID to scan instead of the mapped/configured one",
    )
    scan_parser.add_argument(
        "--year",
        type=int,
        default=None,
        help="Use the folder mapped for this year (default: current year)",
    )
    scan_parser.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        help="Seconds between progress updates (default: 2)",
    )

    # invoices command
    invoices_parser = subparsers.add_parser("invoices", help="List cached invoices")
    _add_scope_arguments(invoices_parser)
    match_filter = invoices_parser.add_mutually_exclusive_group()
    match_filter.add_argument(
        "--matched",
        dest="matched",
        action="store_const",
        const=True,
        default=None,
        help="Only invoices linked to a transaction",
    )
    match_filter.add_argument(
        "--unmatched",
        dest="matched",
        action="store_const",
        const=False,
        help="Only invoices without a transaction",
    )
    invoices_parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of a table",
    )

    # match command
    match_parser = subparsers.add_parser("match", help="Manually link an invoice to a transaction")
    match_parser.add_argument("invoice_id", type=int, help="Cached invoice ID")
    match_parser.add_argument("transaction_id", type=int, help="Transaction ID")

    # unmatch command
    unmatch_parser = subparsers.add_parser("unmatch", help="Remove an invoice's transaction link")
    unmatch_parser.add_argument("invoice_id", type=int, help="Cached invoice ID")

    # link command
    link_parser = subparsers.add_parser(
        "link", help="Link an invoice, unlinking any other invoice from that transaction"
    )
    _add_scope_arguments(link_parser)
    link_parser.add_argument("invoice_id", type=int, help="Cached invoice ID")
    link_parser.add_argument("transaction_id", type=int, help="Transaction ID")

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show match coverage for a scope")
    _add_scope_arguments(stats_parser)

    # map-folder command
    map_parser = subparsers.add_parser("map-folder", help="Set the invoice folder for a year")
    _add_scope_arguments(map_parser)
    map_parser.add_argument("--year", type=int, required=True, help="Invoice year")
    map_parser.add_argument(
        "folder_id",
        type=str,
        nargs="?",
        default=None,
        help="Drive folder ID (omit with --delete)",
    )
    map_parser.add_argument(
        "--path",
        type=str,
        default=None,
        help="Human-readable folder path, for display",
    )
    map_parser.add_argument(
        "--delete",
        action="store_true",
        help="Remove the mapping instead of setting it",
    )

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing file",
    )

    return parser


def _scope(parsed: argparse.Namespace) -> Scope:
    return Scope(user_id=parsed.user, company_id=parsed.company)


def cmd_scan(
    config: Config,
    scope: Scope,
    force: bool = False,
    folder: str | None = None,
    year: int | None = None,
    poll_interval: float = 2.0,
) -> int:
    """Run one scan and follow its progress until it finishes."""
    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    client = DriveClient(
        base_url=config.drive.base_url,
        token=config.drive.token,
        timeout=config.drive.timeout_seconds,
        max_retries=config.drive.max_retries,
    )
    store = StateStore(config.state_db_path)
    service = ScanService(config, store, client, start_janitor=False)

    try:
        job_id = service.start_scan(
            scope,
            ScanOptions(force_rescan=force, folder_override=folder, year=year),
        )
        print(f"🔍 Scan {job_id} started for {scope}")

        while True:
            status = service.get_job_status(job_id)
            if status is None or status["status"] != "running":
                break
            print(f"   {status['processed']}/{status['total']} processed, "
                  f"{status['scanned']} new, {status['matched']} matched")
            time.sleep(poll_interval)

        status = service.wait(job_id)
    finally:
        service.shutdown()

    print(f"\n📄 Processed: {status['processed']}/{status['total']}")
    print(f"   New invoices: {status['scanned']}")
    print(f"   Matched:      {status['matched']}")
    if status["errors"]:
        print(f"\n⚠️  {len(status['errors'])} error(s):")
        for error in status["errors"]:
            print(f"   - {error}")

    if status["status"] == "error":
        print("❌ Scan failed")
        return 1

    print("✓ Scan completed")
    return 0


def cmd_invoices(config: Config, scope: Scope, matched: bool | None, as_json: bool) -> int:
    """List cached invoices."""
    store = StateStore(config.state_db_path)
    invoices = store.list_invoices(scope, matched=matched)

    if as_json:
        print(json.dumps([inv.to_dict() for inv in invoices], indent=2))
        return 0

    if not invoices:
        print("No cached invoices")
        return 0

    for inv in invoices:
        link = f"tx {inv.transaction_id} ({inv.match_confidence:.0%})" if inv.is_matched else "-"
        print(
            f"  [{inv.id}] {inv.date or '????-??-??'}  {str(inv.amount or ''):>10}  "
            f"{(inv.vendor or '')[:30]:<30}  {inv.extraction_method.value:<10}  {link}"
        )
    print(f"\n{len(invoices)} invoice(s)")
    return 0


def cmd_match(config: Config, invoice_id: int, transaction_id: int) -> int:
    """Manually link an invoice to a transaction."""
    store = StateStore(config.state_db_path)
    if store.get_transaction(transaction_id) is None:
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    if not store.match_invoice(invoice_id, transaction_id):
        print(f"❌ Invoice {invoice_id} not found")
        return 1
    print(f"✓ Invoice {invoice_id} linked to transaction {transaction_id}")
    return 0


def cmd_unmatch(config: Config, invoice_id: int) -> int:
    """Remove an invoice's transaction link."""
    store = StateStore(config.state_db_path)
    if not store.unmatch_invoice(invoice_id):
        print(f"❌ Invoice {invoice_id} not found")
        return 1
    print(f"✓ Invoice {invoice_id} unlinked")
    return 0


def cmd_link(config: Config, scope: Scope, invoice_id: int, transaction_id: int) -> int:
    """Link an invoice, taking the transaction away from any other invoice."""
    store = StateStore(config.state_db_path)
    if store.get_transaction(transaction_id) is None:
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    if not store.link_invoice(scope, invoice_id, transaction_id):
        print(f"❌ Invoice {invoice_id} not found for user {scope.user_id}")
        return 1
    print(f"✓ Invoice {invoice_id} linked to transaction {transaction_id}")
    return 0


def cmd_stats(config: Config, scope: Scope) -> int:
    """Show match coverage."""
    store = StateStore(config.state_db_path)
    stats = store.get_invoice_stats(scope)

    print(f"\n📊 Invoices for {scope}")
    print("=" * 40)
    print(f"  Total:       {stats.total}")
    print(f"  Matched:     {stats.matched}")
    print(f"  Unmatched:   {stats.unmatched}")
    print(f"  Match rate:  {stats.match_rate}%")
    if stats.by_method:
        print("  By method:")
        for method, count in sorted(stats.by_method.items()):
            print(f"    {method:<12} {count}")
    print()
    return 0


def cmd_map_folder(
    config: Config,
    scope: Scope,
    year: int,
    folder_id: str | None,
    path: str | None = None,
    delete: bool = False,
) -> int:
    """Set or remove the invoice folder mapped for a year."""
    store = StateStore(config.state_db_path)
    purpose = scope.folder_purpose(year)

    if delete:
        if not store.delete_folder_mapping(scope.user_id, purpose):
            print(f"⚠️  No folder mapped for {purpose}")
            return 1
        print(f"✓ Removed folder mapping {purpose}")
        return 0

    if not folder_id:
        print("❌ A folder ID is required")
        return 1

    store.set_folder_mapping(scope.user_id, purpose, folder_id, folder_path=path)
    print(f"✓ {purpose} → {folder_id}")
    return 0


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"⚠️  {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "scan":
        return cmd_scan(
            config,
            _scope(parsed),
            force=parsed.force,
            folder=parsed.folder,
            year=parsed.year,
            poll_interval=parsed.poll_interval,
        )
    elif parsed.command == "invoices":
        return cmd_invoices(config, _scope(parsed), parsed.matched, parsed.json)
    elif parsed.command == "match":
        return cmd_match(config, parsed.invoice_id, parsed.transaction_id)
    elif parsed.command == "unmatch":
        return cmd_unmatch(config, parsed.invoice_id)
    elif parsed.command == "link":
        return cmd_link(config, _scope(parsed), parsed.invoice_id, parsed.transaction_id)
    elif parsed.command == "stats":
        return cmd_stats(config, _scope(parsed))
    elif parsed.command == "map-folder":
        return cmd_map_folder(
            config,
            _scope(parsed),
            parsed.year,
            parsed.folder_id,
            path=parsed.path,
            delete=parsed.delete,
        )
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
