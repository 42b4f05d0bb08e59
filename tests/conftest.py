import copy
from datetime import date
from decimal import Decimal

import pytest

from shoebox.config_loader import DEFAULTS
from shoebox.models import CandidateReceipt, LineItem, ReceiptRecord
from shoebox.state_store import init_db


@pytest.fixture
def state_db(tmp_path, monkeypatch):
    db = tmp_path / "state.db"
    monkeypatch.setenv("SHOEBOX_STATE_DB", str(db))
    init_db()
    return db


@pytest.fixture
def cfg():
    return copy.deepcopy(DEFAULTS)


def make_candidate(amount="50.00", day=date(2024, 3, 1), merchant="Starbucks KLCC", owner_id="u1", **kw):
    return CandidateReceipt(
        owner_id=owner_id,
        amount=Decimal(amount) if amount is not None else None,
        date=day,
        merchant=merchant,
        items=kw.pop("items", [LineItem("Latte", 1, Decimal("18.00"))]),
        image_bytes=kw.pop("image_bytes", b"\xff\xd8fake-jpeg"),
        **kw,
    )


def make_record(record_id, amount="50.00", day=date(2024, 3, 1), merchant="Starbucks KLCC", owner_id="u1", **kw):
    return ReceiptRecord(
        id=record_id,
        owner_id=owner_id,
        amount=Decimal(amount) if amount is not None else None,
        date=day,
        merchant=merchant,
        **kw,
    )
