"""Verify the hash chain and write signatures of an exported ledger journal.

Export with SqliteJournalLedger(path).export_journal() and json.dump the result.
"""
import json
import sys

from xraycryst.ledger_backends import verify_journal_entries


def main(path):
    with open(path, "r", encoding="utf-8") as f:
        entries = json.load(f)
    result = verify_journal_entries(entries)
    if not result.ok:
        print(f"FAIL: {result.reason} at seq {result.first_bad_seq}")
        sys.exit(1)
    print(f"PASS: ledger journal chain valid ({result.entries} entries)")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python tools/verify_ledger_chain.py <journal_export.json>")
        raise SystemExit(2)
    main(sys.argv[1])
