import argparse
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shoebox.claims import ClaimError, duplicate_reports, pending_claims, resolve_duplicate, verify_claim
from shoebox.state_store import init_db


def list_reports(limit: int):
    reports = duplicate_reports(limit)
    print(f"🔍 {len(reports)} receipts under duplicate review")
    for r in reports:
        original = r.get("original_receipt") or {}
        print(
            f"  {r['id']} owner={r['owner_id']} {r.get('merchant')} {r.get('amount')} {r.get('receipt_date')}"
            f" -> {r.get('duplicate_of') or '-'} ({original.get('merchant', '')})"
            f" confidence={r.get('duplicate_confidence')}"
        )


def list_queue(status: str, limit: int):
    claims = pending_claims(status, limit)
    print(f"📋 {len(claims)} claims with status {status}")
    for c in claims:
        print(
            f"  {c['id']} owner={c['owner_id']} total={c['total']} receipts={len(c['receipt_ids'])}"
            f" submitted={c['submitted_at']}"
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="list receipts under duplicate review")
    p_list.add_argument("--limit", type=int, default=50)

    p_queue = sub.add_parser("queue", help="list expense claims awaiting verification")
    p_queue.add_argument("--status", default="pending_verification")
    p_queue.add_argument("--limit", type=int, default=50)

    p_res = sub.add_parser("resolve", help="keep or clear a duplicate flag")
    p_res.add_argument("--receipt-id", required=True)
    p_res.add_argument("--decision", required=True, choices=["duplicate", "not-duplicate"])
    p_res.add_argument("--admin-id", required=True)
    p_res.add_argument("--notes", default="")

    p_claim = sub.add_parser("verify-claim", help="approve or reject an expense claim")
    p_claim.add_argument("--expense-id", required=True)
    p_claim.add_argument("--action", required=True, choices=["approve", "reject"])
    p_claim.add_argument("--admin-id", required=True)
    p_claim.add_argument("--notes", default="")

    args = parser.parse_args()
    init_db()

    try:
        if args.command == "list":
            list_reports(args.limit)
        elif args.command == "queue":
            list_queue(args.status, args.limit)
        elif args.command == "resolve":
            result = resolve_duplicate(args.receipt_id, args.decision == "duplicate", args.admin_id, args.notes)
            print(f"✅ {result['receipt_id']}: {result['result']}")
        else:
            result = verify_claim(args.expense_id, args.action, args.admin_id, args.notes)
            print(f"✅ {result['expense_id']}: {result['status']}")
    except ClaimError as e:
        print(f"❌ {e}")
        sys.exit(1)
