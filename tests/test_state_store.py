from datetime import date
from decimal import Decimal

from conftest import make_candidate
from shoebox.state_store import (
    find_by_bill_reference,
    get_receipt,
    get_receipt_row,
    list_audit,
    query_amount_window,
    save_tamper_check,
    save_receipt,
    update_receipt_status,
    write_audit,
)


def test_save_and_read_back(state_db):
    cand = make_candidate("50.00", date(2024, 3, 1), "Starbucks KLCC", bill_reference="INV-1", category="meals")
    save_receipt("r1", cand, potential_duplicates=[{"id": "r0", "confidence": 75}])

    rec = get_receipt("r1")
    assert rec.owner_id == "u1"
    assert rec.amount == Decimal("50.0")
    assert rec.date == date(2024, 3, 1)
    assert rec.merchant == "Starbucks KLCC"
    assert [i.name for i in rec.items] == ["Latte"]
    assert rec.linked_duplicate_id is None

    row = get_receipt_row("r1")
    assert row["potential_duplicates"] == [{"id": "r0", "confidence": 75}]
    assert row["status"] == "processed"
    assert row["duplicate_status"] == "none"
    assert get_receipt("missing") is None


def test_amount_window_bounds_and_scope(state_db):
    for rid, amount, owner in [
        ("in-low", "47.60", "u1"),
        ("in-high", "52.40", "u1"),
        ("out-low", "47.00", "u1"),
        ("out-high", "53.00", "u1"),
        ("other-owner", "50.00", "u2"),
    ]:
        save_receipt(rid, make_candidate(amount, owner_id=owner))

    scoped = {r.id for r in query_amount_window(Decimal("50.00"), owner_id="u1")}
    assert scoped == {"in-low", "in-high"}

    everyone = {r.id for r in query_amount_window(Decimal("50.00"))}
    assert everyone == {"in-low", "in-high", "other-owner"}


def test_amount_window_newest_first_and_limited(state_db):
    for i in range(5):
        save_receipt(f"r{i}", make_candidate("20.00"))

    window = query_amount_window(Decimal("20.00"), owner_id="u1", limit=3)

    assert [r.id for r in window] == ["r4", "r3", "r2"]


def test_amount_window_without_amount_returns_recent(state_db):
    save_receipt("a", make_candidate("10.00"))
    save_receipt("b", make_candidate(None))

    assert [r.id for r in query_amount_window(None, owner_id="u1")] == ["b", "a"]


def test_duplicate_link_round_trip(state_db):
    save_receipt("orig", make_candidate())
    save_receipt("dup", make_candidate(), status="flagged", duplicate_status="detected",
                 duplicate_of="orig", duplicate_confidence=0.9)

    assert get_receipt("dup").linked_duplicate_id == "orig"

    update_receipt_status(["dup"], status="processed", duplicate_status="none", clear_duplicate_of=True)
    row = get_receipt_row("dup")
    assert row["duplicate_of"] is None
    assert row["status"] == "processed"


def test_bill_reference_lookup_is_owner_scoped(state_db):
    save_receipt("r1", make_candidate(bill_reference="INV-77"))

    assert find_by_bill_reference("u1", "INV-77") == "r1"
    assert find_by_bill_reference("u2", "INV-77") is None
    assert find_by_bill_reference("u1", "") is None


def test_audit_log(state_db):
    write_audit("INFO", "system", "upload", ["r1", "r0"], 100, "detected")
    write_audit("WARNING", "system", "deep_analysis", ["r0"], 100, "provider_error", "timeout")

    entries = list_audit()
    assert [e.action for e in entries] == ["upload", "deep_analysis"]
    assert entries[0].target_ids == ["r1", "r0"]
    assert list_audit("deep_analysis")[0].error == "timeout"


def test_audit_notes_are_not_errors(state_db):
    write_audit("INFO", "admin", "duplicate_resolve", ["r1"], 0.9, "cleared", notes="different table number")

    entry = list_audit("duplicate_resolve")[0]
    assert entry.notes == "different table number"
    assert entry.error is None


def test_tamper_check_round_trip(state_db):
    save_receipt("r1", make_candidate())
    assert get_receipt_row("r1")["tamper_check"] is None

    save_tamper_check("r1", {"isTampered": False, "confidence": 0.9, "reasons": [], "riskLevel": "low"})

    row = get_receipt_row("r1")
    assert row["tamper_check"]["riskLevel"] == "low"
    assert row["tamper_checked_at"] is not None
    assert get_receipt("r1").id == "r1"
