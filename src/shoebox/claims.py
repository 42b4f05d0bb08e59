"""
Expense claims built from banked receipts, and the admin review actions.
"""

import uuid
from typing import Dict, List, Optional

from shoebox.state_store import (
    get_expense,
    get_receipt_row,
    get_receipt_rows,
    list_duplicate_reports,
    list_expenses,
    put_expense,
    update_expense_status,
    update_receipt_status,
    write_audit,
)


class ClaimError(Exception):
    pass


class FlaggedReceiptsError(ClaimError):
    """Some receipts in the claim are flagged for review."""

    def __init__(self, flagged: List[Dict]):
        self.flagged = flagged
        super().__init__(f"Some receipts are flagged for review: {[f['id'] for f in flagged]}")


class AlreadyClaimedError(ClaimError):
    """Some receipts already belong to a claim or were reviewed."""

    def __init__(self, receipt_ids: List[str]):
        self.receipt_ids = receipt_ids
        super().__init__(f"Receipts already claimed: {receipt_ids}")


def _flag_reason(row: Dict) -> str:
    return "Duplicate detected" if row.get("duplicate_status") == "detected" else "Flagged"


def submit_claim(owner_id: str, receipt_ids: List[str], category: str = "General", notes: str = "") -> Dict:
    """Batch the owner's receipts into one claim pending admin verification."""
    if not receipt_ids:
        raise ClaimError("receipt_ids are required")

    rows = get_receipt_rows(receipt_ids, owner_id=owner_id)
    print(f"📤 Claim for {owner_id}: {len(rows)} valid receipts out of {len(receipt_ids)} requested")
    if not rows:
        raise ClaimError("No valid receipts found")

    flagged = [
        {"id": r["id"], "reason": _flag_reason(r)}
        for r in rows
        if r.get("status") == "flagged" or r.get("duplicate_status") == "detected"
    ]
    if flagged:
        write_audit("WARNING", owner_id, "claim_submit", [f["id"] for f in flagged], None, "blocked_flagged")
        raise FlaggedReceiptsError(flagged)

    claimed = [r["id"] for r in rows if r.get("expense_id") or r.get("status") != "processed"]
    if claimed:
        write_audit("WARNING", owner_id, "claim_submit", claimed, None, "blocked_claimed")
        raise AlreadyClaimedError(claimed)

    total = 0.0
    breakdown: Dict[str, float] = {}
    for r in rows:
        amount = r.get("amount") or 0.0
        total += amount
        cat = r.get("category") or "misc"
        breakdown[cat] = breakdown.get(cat, 0.0) + amount
    total = round(total, 2)
    breakdown = {k: round(v, 2) for k, v in breakdown.items()}

    found_ids = [r["id"] for r in rows]
    expense_id = str(uuid.uuid4())
    put_expense(expense_id, owner_id, found_ids, total, breakdown, category=category or "General", notes=notes)
    update_receipt_status(found_ids, status="submitted", expense_id=expense_id)
    write_audit("INFO", owner_id, "claim_submit", [expense_id] + found_ids, None, "pending_verification")

    return {"expense_id": expense_id, "total": total, "receipt_count": len(rows), "category_breakdown": breakdown}


def verify_claim(expense_id: str, action: str, admin_id: str, notes: str = "") -> Dict:
    """Admin approves or rejects a claim; its receipts follow the claim status."""
    if action not in {"approve", "reject"}:
        raise ValueError("action must be 'approve' or 'reject'")

    expense = get_expense(expense_id)
    if not expense:
        raise ClaimError(f"Expense claim not found: {expense_id}")

    new_status = "approved" if action == "approve" else "rejected"
    update_expense_status(expense_id, new_status, admin_id, notes or "")
    if expense["receipt_ids"]:
        update_receipt_status(expense["receipt_ids"], status=new_status)
    write_audit("INFO", admin_id, f"claim:{action}", [expense_id] + expense["receipt_ids"], None, new_status)
    print(f"🎉 Expense claim {expense_id} {new_status}")
    return {"expense_id": expense_id, "status": new_status}


def resolve_duplicate(receipt_id: str, is_duplicate: bool, actor: str, notes: str = "") -> Dict:
    """Admin decision on a flagged receipt: keep the flag, or clear it."""
    row = get_receipt_row(receipt_id)
    if not row:
        raise ClaimError(f"Receipt not found: {receipt_id}")

    if is_duplicate:
        update_receipt_status([receipt_id], status="flagged")
        result = "kept_flagged"
    else:
        # receipts already claimed keep their claim status
        new_status = "processed" if row.get("status") == "flagged" else None
        update_receipt_status([receipt_id], status=new_status, duplicate_status="none", clear_duplicate_of=True)
        result = "cleared"
    write_audit("INFO", actor, "duplicate_resolve", [receipt_id], row.get("duplicate_confidence"), result,
                notes=notes or None)
    return {"receipt_id": receipt_id, "result": result}


def duplicate_reports(limit: int = 50) -> List[Dict]:
    """Receipts under duplicate review, each with the original it points at."""
    reports = []
    for row in list_duplicate_reports(limit):
        original: Optional[Dict] = None
        if row.get("duplicate_of"):
            original = get_receipt_row(row["duplicate_of"])
        report = dict(row)
        report["original_receipt"] = original
        reports.append(report)
    return reports


def pending_claims(status: str = "pending_verification", limit: int = 50) -> List[Dict]:
    """Admin verification queue, oldest submission first."""
    return list_expenses(status, limit)
