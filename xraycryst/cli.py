#!/usr/bin/env python3
"""
XrayCryst Command Line Interface

Usage:
    xraycryst keygen [--output <file>]
    xraycryst submit --image <name> [--description <text>] | --payload-file <file>
    xraycryst advance <analysis_id>
    xraycryst list [--owner <address>] [--status processing|completed|failed] [--json]
    xraycryst show <analysis_id>
    xraycryst verify-journal [--file <exported journal>]
    xraycryst export-journal [--output <file>]

The CLI works against the SQLite journal ledger unless --backend says
otherwise; writes are signed with the wallet key file (--wallet).
"""

import argparse
import json
import sys
from datetime import datetime, timezone

from .config import LEDGER_BACKENDS, load_settings
from .errors import XrayCrystError
from .logging_config import configure_logging
from .records import AnalysisRecord, RecordStatus


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def record_summary(record: AnalysisRecord, full: bool = False) -> dict:
    from .util import b64e

    out = {
        "id": record.id,
        "owner": record.owner,
        "status": record.status.value,
        "created_at": record.created_at,
        "created": datetime.fromtimestamp(record.created_at, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
        "artifacts": len(record.artifacts),
    }
    if full:
        out["payload_b64"] = b64e(record.payload)
        out["artifacts_b64"] = [b64e(a) for a in record.artifacts]
    return out


def _settings(args):
    settings = load_settings(ledger_backend=args.backend or "sqlite")
    if args.ledger:
        settings.sqlite_path = args.ledger
    if args.wallet:
        settings.wallet_path = args.wallet
    return settings


def _engine(args, writable: bool):
    from .compute import get_compute_backend
    from .ledger_backends import get_ledger_client
    from .store import RecordStore
    from .wallet import FileWalletSigner
    from .workflow import WorkflowEngine

    settings = _settings(args)
    signer = FileWalletSigner(settings.wallet_path) if writable else None
    ledger = get_ledger_client(settings, signer=signer)
    return WorkflowEngine(RecordStore(ledger), get_compute_backend(settings)), signer


def cmd_keygen(args):
    """Generate a wallet key file."""
    from .wallet import generate_wallet

    path = args.output or _settings(args).wallet_path
    signer = generate_wallet(path)
    print(signer.address)
    print(f"Wallet key saved to: {path}", file=sys.stderr)
    return 0


def cmd_submit(args):
    """Submit a new analysis."""
    engine, signer = _engine(args, writable=True)
    if args.payload_file:
        with open(args.payload_file, 'rb') as f:
            record = engine.submit(signer.address, f.read())
    else:
        record = engine.submit_image(signer.address, args.image, args.description or "")
    print(json.dumps(record_summary(record), indent=2))
    return 0


def cmd_advance(args):
    """Run the computation for a processing analysis."""
    engine, signer = _engine(args, writable=True)
    record = engine.advance(args.analysis_id, signer.address)
    print(json.dumps(record_summary(record), indent=2))
    if record.status == RecordStatus.COMPLETED:
        print(f"\n✓ {record.short_id()} completed with {len(record.artifacts)} artifacts", file=sys.stderr)
        return 0
    print(f"\n✗ {record.short_id()} failed", file=sys.stderr)
    return 1


def cmd_list(args):
    """List analyses, newest first."""
    engine, _ = _engine(args, writable=False)
    records = engine.store.list(owner=args.owner, status=args.status)
    if args.json:
        print(json.dumps([record_summary(r) for r in records], indent=2))
        return 0
    for r in records:
        created = datetime.fromtimestamp(r.created_at, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        print(f"{r.id}  {r.status.value:<10}  {r.short_owner():<13}  {created}  artifacts={len(r.artifacts)}")
    print(f"\n{len(records)} analyses", file=sys.stderr)
    return 0


def cmd_show(args):
    """Show one analysis in full."""
    engine, _ = _engine(args, writable=False)
    print(json.dumps(record_summary(engine.store.get(args.analysis_id), full=True), indent=2))
    return 0


def cmd_verify_journal(args):
    """Verify the SQLite journal hash chain and write signatures."""
    from .ledger_backends import SqliteJournalLedger, verify_journal_entries

    if args.file:
        result = verify_journal_entries(load_json(args.file))
    else:
        result = SqliteJournalLedger(_settings(args).sqlite_path).verify_journal()

    if result.ok:
        print(f"✓ journal valid: {result.entries} entries, head {result.head_entry_hash}")
        return 0
    print(f"✗ INVALID at seq {result.first_bad_seq}: {result.reason}")
    return 1


def cmd_export_journal(args):
    """Export the SQLite journal as JSON."""
    from .ledger_backends import SqliteJournalLedger

    entries = SqliteJournalLedger(_settings(args).sqlite_path).export_journal()
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(entries, f, indent=2)
        print(f"Journal ({len(entries)} entries) saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(entries, indent=2))
    return 0


COMMANDS = {
    "keygen": cmd_keygen,
    "submit": cmd_submit,
    "advance": cmd_advance,
    "list": cmd_list,
    "show": cmd_show,
    "verify-journal": cmd_verify_journal,
    "export-journal": cmd_export_journal,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xraycryst",
        description="XrayCryst analysis ledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  xraycryst keygen -o secrets/wallet.json
  xraycryst submit -i lysozyme_01.mtz -d "hen egg-white lysozyme"
  xraycryst advance 1718000000000-k3j9x2a
  xraycryst list --status completed
  xraycryst verify-journal
        """
    )
    parser.add_argument("--backend", choices=LEDGER_BACKENDS, help="Ledger backend (default: sqlite)")
    parser.add_argument("--ledger", help="SQLite journal path")
    parser.add_argument("--wallet", help="Wallet key file")
    parser.add_argument("--log-level", default="WARNING", help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate wallet key file")
    keygen_parser.add_argument("-o", "--output", help="Output key file")

    submit_parser = subparsers.add_parser("submit", help="Submit an analysis")
    source = submit_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-i", "--image", help="Diffraction image name to seal")
    source.add_argument("-p", "--payload-file", help="File with an already encrypted payload")
    submit_parser.add_argument("-d", "--description", help="Sample description")

    advance_parser = subparsers.add_parser("advance", help="Process an analysis")
    advance_parser.add_argument("analysis_id")

    list_parser = subparsers.add_parser("list", help="List analyses")
    list_parser.add_argument("--owner", help="Only analyses owned by this address")
    list_parser.add_argument("--status", choices=[s.value for s in RecordStatus], help="Only analyses in this status")
    list_parser.add_argument("--json", action="store_true", help="JSON output")

    show_parser = subparsers.add_parser("show", help="Show one analysis")
    show_parser.add_argument("analysis_id")

    verify_parser = subparsers.add_parser("verify-journal", help="Verify the journal hash chain")
    verify_parser.add_argument("-f", "--file", help="Exported journal JSON (default: the SQLite ledger)")

    export_parser = subparsers.add_parser("export-journal", help="Export the journal as JSON")
    export_parser.add_argument("-o", "--output", help="Output file (default: stdout)")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    configure_logging(level=args.log_level, json_format=False)
    try:
        return handler(args)
    except XrayCrystError as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
