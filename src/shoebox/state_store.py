import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from shoebox.models import AuditLog, CandidateReceipt, ReceiptRecord


def _get_db_path() -> str:
    """Read the DB path from the environment on every call (tests monkeypatch it)."""
    return os.getenv("SHOEBOX_STATE_DB", "shoebox_state.db")


@contextmanager
def _conn():
    con = sqlite3.connect(_get_db_path())
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    try:
        yield con
        con.commit()
    finally:
        con.close()


def _now() -> str:
    return datetime.utcnow().isoformat()


def init_db():
    with _conn() as con:
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS receipts (
              id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              amount REAL,
              receipt_date TEXT,
              merchant TEXT,
              items_json TEXT,
              bill_reference TEXT,
              category TEXT,
              status TEXT DEFAULT 'processed',
              duplicate_status TEXT DEFAULT 'none',
              duplicate_of TEXT,
              duplicate_confidence REAL,
              potential_duplicates_json TEXT,
              expense_id TEXT,
              tamper_check_json TEXT,
              tamper_checked_at TEXT,
              uploaded_at TEXT,
              updated_at TEXT
            );
            """
        )
        con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_amount ON receipts(amount);")
        con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_owner ON receipts(owner_id);")
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
              id TEXT PRIMARY KEY,
              owner_id TEXT NOT NULL,
              category TEXT DEFAULT 'General',
              notes TEXT,
              receipt_ids_json TEXT,
              total REAL DEFAULT 0,
              category_breakdown_json TEXT,
              status TEXT DEFAULT 'pending_verification',
              submitted_at TEXT,
              verified_at TEXT,
              verified_by TEXT,
              verification_notes TEXT
            );
            """
        )
        con.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
              ts TEXT,
              level TEXT,
              actor TEXT,
              action TEXT,
              target_ids TEXT,
              score REAL,
              result TEXT,
              error TEXT,
              notes TEXT
            );
            """
        )


def _decode_receipt_row(row: sqlite3.Row) -> Dict:
    out = dict(row)
    try:
        out["potential_duplicates"] = json.loads(out.pop("potential_duplicates_json") or "[]")
    except ValueError:
        out["potential_duplicates"] = []
    try:
        out["tamper_check"] = json.loads(out.pop("tamper_check_json") or "null")
    except ValueError:
        out["tamper_check"] = None
    return out


def save_receipt(
    receipt_id: str,
    candidate: CandidateReceipt,
    *,
    status: str = "processed",
    duplicate_status: str = "none",
    duplicate_of: Optional[str] = None,
    duplicate_confidence: float = 0.0,
    potential_duplicates: Optional[List[Dict]] = None,
):
    now = _now()
    with _conn() as con:
        con.execute(
            """
            INSERT INTO receipts(
              id, owner_id, amount, receipt_date, merchant, items_json, bill_reference, category,
              status, duplicate_status, duplicate_of, duplicate_confidence, potential_duplicates_json,
              uploaded_at, updated_at
            ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                receipt_id,
                candidate.owner_id,
                float(candidate.amount) if candidate.amount is not None else None,
                candidate.date.isoformat() if candidate.date else None,
                candidate.merchant,
                json.dumps([i.to_dict() for i in candidate.items], ensure_ascii=False),
                candidate.bill_reference,
                candidate.category,
                status,
                duplicate_status,
                duplicate_of,
                duplicate_confidence,
                json.dumps(potential_duplicates or [], ensure_ascii=False),
                now,
                now,
            ),
        )


def get_receipt(receipt_id: str) -> Optional[ReceiptRecord]:
    row = get_receipt_row(receipt_id)
    return ReceiptRecord.from_row(row) if row else None


def get_receipt_row(receipt_id: str) -> Optional[Dict]:
    with _conn() as con:
        cur = con.execute("SELECT * FROM receipts WHERE id=?", (receipt_id,))
        row = cur.fetchone()
        return _decode_receipt_row(row) if row else None


def get_receipt_rows(receipt_ids: List[str], owner_id: Optional[str] = None) -> List[Dict]:
    if not receipt_ids:
        return []
    placeholders = ",".join("?" for _ in receipt_ids)
    sql = f"SELECT * FROM receipts WHERE id IN ({placeholders})"
    params: list = list(receipt_ids)
    if owner_id is not None:
        sql += " AND owner_id=?"
        params.append(owner_id)
    with _conn() as con:
        return [_decode_receipt_row(r) for r in con.execute(sql, params).fetchall()]


def find_by_bill_reference(owner_id: str, bill_reference: str) -> Optional[str]:
    if not bill_reference:
        return None
    with _conn() as con:
        cur = con.execute(
            "SELECT id FROM receipts WHERE owner_id=? AND bill_reference=? LIMIT 1",
            (owner_id, bill_reference),
        )
        row = cur.fetchone()
        return row["id"] if row else None


def query_amount_window(
    amount: Optional[Decimal],
    owner_id: Optional[str] = None,
    tolerance: float = 0.05,
    limit: int = 50,
) -> List[ReceiptRecord]:
    """Historical receipts whose amount lies within ±tolerance of amount, newest first.

    Without an amount the range predicate is dropped and the newest receipts
    in scope are returned instead.
    """
    sql = "SELECT * FROM receipts WHERE 1=1"
    params: list = []
    if amount is not None:
        a = float(amount)
        lo, hi = sorted((a * (1 - tolerance), a * (1 + tolerance)))
        sql += " AND amount >= ? AND amount <= ?"
        params += [lo, hi]
    if owner_id is not None:
        sql += " AND owner_id = ?"
        params.append(owner_id)
    sql += " ORDER BY uploaded_at DESC, rowid DESC LIMIT ?"
    params.append(limit)
    with _conn() as con:
        return [ReceiptRecord.from_row(dict(r)) for r in con.execute(sql, params).fetchall()]


def update_receipt_status(
    receipt_ids: List[str],
    *,
    status: Optional[str] = None,
    duplicate_status: Optional[str] = None,
    expense_id: Optional[str] = None,
    clear_duplicate_of: bool = False,
):
    sets = ["updated_at=?"]
    params: list = [_now()]
    if status is not None:
        sets.append("status=?")
        params.append(status)
    if duplicate_status is not None:
        sets.append("duplicate_status=?")
        params.append(duplicate_status)
    if expense_id is not None:
        sets.append("expense_id=?")
        params.append(expense_id)
    if clear_duplicate_of:
        sets.append("duplicate_of=NULL")
        sets.append("duplicate_confidence=0")
    placeholders = ",".join("?" for _ in receipt_ids)
    with _conn() as con:
        con.execute(f"UPDATE receipts SET {', '.join(sets)} WHERE id IN ({placeholders})", params + list(receipt_ids))


def save_tamper_check(receipt_id: str, result: Dict):
    now = _now()
    with _conn() as con:
        con.execute(
            "UPDATE receipts SET tamper_check_json=?, tamper_checked_at=?, updated_at=? WHERE id=?",
            (json.dumps(result, ensure_ascii=False), now, now, receipt_id),
        )


def list_duplicate_reports(limit: int = 50) -> List[Dict]:
    with _conn() as con:
        cur = con.execute(
            "SELECT * FROM receipts WHERE duplicate_status IN ('detected', 'potential') "
            "ORDER BY uploaded_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [_decode_receipt_row(r) for r in cur.fetchall()]


def put_expense(expense_id: str, owner_id: str, receipt_ids: List[str], total: float,
                category_breakdown: Dict, category: str = "General", notes: str = ""):
    with _conn() as con:
        con.execute(
            """
            INSERT INTO expenses(id, owner_id, category, notes, receipt_ids_json, total,
                                 category_breakdown_json, status, submitted_at)
            VALUES (?,?,?,?,?,?,?,?,?)
            """,
            (
                expense_id,
                owner_id,
                category,
                notes,
                json.dumps(receipt_ids),
                total,
                json.dumps(category_breakdown, ensure_ascii=False),
                "pending_verification",
                _now(),
            ),
        )


def _decode_expense_row(row: sqlite3.Row) -> Dict:
    out = dict(row)
    out["receipt_ids"] = json.loads(out.pop("receipt_ids_json") or "[]")
    out["category_breakdown"] = json.loads(out.pop("category_breakdown_json") or "{}")
    return out


def get_expense(expense_id: str) -> Optional[Dict]:
    with _conn() as con:
        row = con.execute("SELECT * FROM expenses WHERE id=?", (expense_id,)).fetchone()
        return _decode_expense_row(row) if row else None


def list_expenses(status: str = "pending_verification", limit: int = 50) -> List[Dict]:
    """Claims in the given status, oldest submission first."""
    with _conn() as con:
        cur = con.execute(
            "SELECT * FROM expenses WHERE status=? ORDER BY submitted_at ASC, rowid ASC LIMIT ?",
            (status, limit),
        )
        return [_decode_expense_row(r) for r in cur.fetchall()]


def update_expense_status(expense_id: str, status: str, verified_by: str, notes: str = ""):
    with _conn() as con:
        con.execute(
            "UPDATE expenses SET status=?, verification_notes=?, verified_by=?, verified_at=? WHERE id=?",
            (status, notes, verified_by, _now(), expense_id),
        )


def write_audit(level: str, actor: str, action: str, target_ids: list, score, result: str,
                error: str | None = None, notes: str | None = None):
    with _conn() as con:
        con.execute(
            "INSERT INTO audit_log(ts, level, actor, action, target_ids, score, result, error, notes) "
            "VALUES (?,?,?,?,?,?,?,?,?)",
            (_now(), level, actor, action, json.dumps(target_ids), score, result, error, notes),
        )


def list_audit(action: Optional[str] = None) -> List[AuditLog]:
    sql = "SELECT * FROM audit_log"
    params: list = []
    if action is not None:
        sql += " WHERE action=?"
        params.append(action)
    sql += " ORDER BY rowid"
    with _conn() as con:
        return [
            AuditLog(
                ts=r["ts"],
                level=r["level"],
                actor=r["actor"],
                action=r["action"],
                target_ids=json.loads(r["target_ids"] or "[]"),
                score=r["score"],
                result=r["result"],
                error=r["error"],
                notes=r["notes"],
            )
            for r in con.execute(sql, params).fetchall()
        ]
