"""
Receipt tamper check
Asks the vision model whether a stored receipt photo shows signs of editing,
and keeps the latest result on the receipt row.
"""

import json
import math

from shoebox.deep_analyzer import VisionTextProvider, extract_json_object
from shoebox.models import ReceiptRecord, TamperResult
from shoebox.state_store import get_receipt_row, save_tamper_check, write_audit


RISK_LEVELS = ("low", "medium", "high")


class ReceiptNotFoundError(LookupError):
    pass


def build_tamper_prompt(record: ReceiptRecord) -> str:
    return f"""Inspect this receipt image for signs of tampering or forgery.

Extracted data on file:
{json.dumps(record.summary(), indent=2, ensure_ascii=False)}

Look for:
1. Edited or overwritten digits in the total, date or line items
2. Mismatched fonts, alignment or print density
3. Copy-paste artifacts, blur or compression around key fields
4. Totals that do not add up to the line items

Return ONLY a JSON object:
{{
  "isTampered": boolean,
  "confidence": 0.0-1.0,
  "reasons": ["short finding", ...],
  "riskLevel": "low" | "medium" | "high"
}}"""


def parse_tamper_result(text: str) -> TamperResult:
    data = extract_json_object(text)

    is_tampered = data.get("isTampered")
    if not isinstance(is_tampered, bool):
        raise ValueError(f"isTampered must be a boolean, got {is_tampered!r}")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
        raise ValueError(f"confidence must be a number, got {confidence!r}")

    risk_level = data.get("riskLevel")
    if risk_level not in RISK_LEVELS:
        raise ValueError(f"riskLevel must be one of {RISK_LEVELS}, got {risk_level!r}")

    reasons = data.get("reasons") or []
    if not isinstance(reasons, list):
        reasons = [reasons]

    return TamperResult(
        is_tampered=is_tampered,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasons=[str(r) for r in reasons],
        risk_level=risk_level,
    )


def detect_tamper(image: bytes, record: ReceiptRecord, provider: VisionTextProvider) -> TamperResult:
    """Never raises; a failed check comes back untampered with risk "unknown" and the error."""
    try:
        raw = provider.send(image, build_tamper_prompt(record))
        return parse_tamper_result(raw)
    except Exception as e:
        print(f"  ⚠️ Tamper check failed: {e}")
        return TamperResult(is_tampered=False, confidence=0.0, error=str(e))


def run_tamper_check(receipt_id: str, owner_id: str, image: bytes, provider: VisionTextProvider) -> TamperResult:
    """Run the tamper check on one of the owner's receipts and persist the result."""
    row = get_receipt_row(receipt_id)
    if not row or row.get("owner_id") != owner_id:
        raise ReceiptNotFoundError(f"Receipt not found: {receipt_id}")

    result = detect_tamper(image, ReceiptRecord.from_row(row), provider)
    save_tamper_check(receipt_id, result.to_dict())

    level = "WARNING" if result.is_tampered or result.error else "INFO"
    outcome = "provider_error" if result.error else result.risk_level
    write_audit(level, owner_id, "tamper_check", [receipt_id], result.confidence, outcome, result.error)
    print(f"  🔎 Tamper check {receipt_id}: tampered={result.is_tampered} risk={result.risk_level}")
    return result
