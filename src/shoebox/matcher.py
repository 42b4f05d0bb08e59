from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from shoebox.models import CandidateReceipt, MatchResult, ReceiptRecord, parse_amount, parse_date
from shoebox.similarity import similarity


# Emission gate for matcher results (0-100 scale). Independent of the
# deep-analysis trigger and the verdict acceptance floor.
MATCH_EMIT_THRESHOLD = 60

MERCHANT_MATCH_THRESHOLD = 0.7
SAME_MERCHANT_THRESHOLD = 0.9

DEFAULT_WEIGHTS = {"amount": 40, "date": 35, "merchant": 25}

_CENT = Decimal("0.01")


def normalize_amount(value) -> Optional[Decimal]:
    amount = parse_amount(value)
    if amount is None:
        return None
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def normalize_date(value) -> Optional[str]:
    d = parse_date(value)
    return d.isoformat() if d else None


def _settings(cfg: Optional[Dict]) -> Tuple[Dict, float, float, int]:
    cfg = cfg or {}
    weights = dict(DEFAULT_WEIGHTS)
    weights.update(cfg.get("weights") or {})
    merchant = cfg.get("merchant") or {}
    thresholds = cfg.get("thresholds") or {}
    return (
        weights,
        merchant.get("match", MERCHANT_MATCH_THRESHOLD),
        merchant.get("same", SAME_MERCHANT_THRESHOLD),
        thresholds.get("match_emit", MATCH_EMIT_THRESHOLD),
    )


def score_match(candidate: CandidateReceipt, record: ReceiptRecord, cfg: Optional[Dict] = None) -> Tuple[int, List[str], float]:
    """Score one historical record against the candidate.

    Returns (confidence, reasons, merchant_similarity). Missing or unreadable
    fields simply fail their own signal.
    """
    weights, merchant_match, same_merchant, _ = _settings(cfg)
    reasons: List[str] = []
    confidence = 0

    # amount
    a1 = normalize_amount(candidate.amount)
    a2 = normalize_amount(record.amount)
    if a1 is not None and a2 is not None and abs(a1 - a2) < _CENT:
        confidence += weights["amount"]
        reasons.append("Same amount")

    # date
    d1 = normalize_date(candidate.date)
    d2 = normalize_date(record.date)
    if d1 and d2 and d1 == d2:
        confidence += weights["date"]
        reasons.append("Same date")

    # merchant
    sim = similarity(candidate.merchant, record.merchant)
    if sim > merchant_match:
        confidence += weights["merchant"]
        reasons.append("Same merchant" if sim > same_merchant else "Similar merchant")

    return confidence, reasons, sim


def find_candidates(candidate: CandidateReceipt, historical_window: List[ReceiptRecord], cfg: Optional[Dict] = None) -> List[MatchResult]:
    """Rank historical receipts that look like the same purchase.

    The window is expected to be amount-filtered by the store already, but
    any window is scored correctly. Records that are themselves linked as a
    duplicate are never candidates. Ties keep window order (the store hands
    it over newest first).
    """
    emit_threshold = _settings(cfg)[3]

    results: List[MatchResult] = []
    for record in historical_window or []:
        if record.linked_duplicate_id:
            continue
        confidence, reasons, sim = score_match(candidate, record, cfg)
        if confidence >= emit_threshold:
            results.append(
                MatchResult(
                    record_id=record.id,
                    confidence=confidence,
                    reasons=reasons,
                    merchant_similarity=sim,
                    record=record,
                )
            )

    results.sort(key=lambda m: m.confidence, reverse=True)
    return results
