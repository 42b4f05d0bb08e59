import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional


_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Amount as Decimal, or None when it cannot be read."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            d = Decimal(str(value))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None
    if isinstance(value, str):
        s = value.strip()
        s = re.sub(r"^(RM|MYR|USD|SGD|EUR|[$€£¥])\s*", "", s, flags=re.IGNORECASE)
        s = s.replace(",", "")
        if not s:
            return None
        try:
            d = Decimal(s)
        except InvalidOperation:
            return None
        return d if d.is_finite() else None
    return None


def parse_date(value: Any) -> Optional[date]:
    """Free-form OCR date as a date, or None when it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


@dataclass
class LineItem:
    name: str
    quantity: float = 1
    price: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "LineItem":
        name = data.get("name") or data.get("item_description") or ""
        quantity = data.get("quantity") or 1
        return cls(name=str(name), quantity=quantity, price=parse_amount(data.get("price")))

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "price": float(self.price) if self.price is not None else None,
        }


def _items_from(raw: Any) -> List[LineItem]:
    if not isinstance(raw, list):
        return []
    return [LineItem.from_dict(i) for i in raw if isinstance(i, dict)]


@dataclass
class ReceiptRecord:
    id: str
    owner_id: str
    amount: Optional[Decimal]
    date: Optional[date]
    merchant: Optional[str]
    items: List[LineItem] = field(default_factory=list)
    linked_duplicate_id: Optional[str] = None
    bill_reference: Optional[str] = None
    category: Optional[str] = None
    status: str = "processed"
    duplicate_status: str = "none"
    uploaded_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict) -> "ReceiptRecord":
        """Build a typed record from a store row."""
        try:
            items = json.loads(row.get("items_json") or "[]")
        except (TypeError, ValueError):
            items = []
        return cls(
            id=str(row["id"]),
            owner_id=str(row.get("owner_id") or ""),
            amount=parse_amount(row.get("amount")),
            date=parse_date(row.get("receipt_date")),
            merchant=row.get("merchant"),
            items=_items_from(items),
            linked_duplicate_id=row.get("duplicate_of"),
            bill_reference=row.get("bill_reference"),
            category=row.get("category"),
            status=row.get("status") or "processed",
            duplicate_status=row.get("duplicate_status") or "none",
            uploaded_at=row.get("uploaded_at"),
        )

    def summary(self) -> Dict:
        return {
            "id": self.id,
            "merchant": self.merchant,
            "amount": float(self.amount) if self.amount is not None else None,
            "date": self.date.isoformat() if self.date else None,
            "items": ", ".join(i.name for i in self.items if i.name),
        }


@dataclass
class CandidateReceipt:
    owner_id: str
    amount: Optional[Decimal]
    date: Optional[date]
    merchant: Optional[str]
    items: List[LineItem] = field(default_factory=list)
    image_bytes: bytes = b""
    bill_reference: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_ocr(cls, owner_id: str, ocr: Dict, image_bytes: bytes = b"") -> "CandidateReceipt":
        """Build a candidate from an OCR extraction dict."""
        amount = ocr.get("amount")
        if amount is None:
            amount = ocr.get("total_amount")
        return cls(
            owner_id=str(owner_id),
            amount=parse_amount(amount),
            date=parse_date(ocr.get("date")),
            merchant=ocr.get("merchant") or ocr.get("vendor_name"),
            items=_items_from(ocr.get("items") or ocr.get("bill_items")),
            image_bytes=image_bytes,
            bill_reference=ocr.get("billReference") or ocr.get("reference_number") or None,
            category=ocr.get("category") or None,
        )


@dataclass
class MatchResult:
    record_id: str
    confidence: int
    reasons: List[str]
    merchant_similarity: float
    record: Optional[ReceiptRecord] = None

    def to_dict(self) -> Dict:
        out = {
            "id": self.record_id,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "merchantSimilarity": round(self.merchant_similarity, 4),
        }
        if self.record is not None:
            out["ocrData"] = self.record.summary()
            out["userId"] = self.record.owner_id
            out["uploadedAt"] = self.record.uploaded_at
            out["status"] = self.record.status
        return out


@dataclass
class DuplicateVerdict:
    is_duplicate: bool
    confidence: float
    matched_record_id: Optional[str] = None
    reasoning: str = ""
    error: Optional[str] = None


@dataclass
class TamperResult:
    is_tampered: bool
    confidence: float
    reasons: List[str] = field(default_factory=list)
    risk_level: str = "unknown"
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        out = {
            "isTampered": self.is_tampered,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "riskLevel": self.risk_level,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class AuditLog:
    ts: str
    level: str
    actor: str
    action: str
    target_ids: list[str]
    score: Optional[float]
    result: str
    error: Optional[str] = None
    notes: Optional[str] = None
