import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from shoebox.config_loader import load_duplicate_config
from shoebox.deep_analyzer import (
    DEEP_ANALYSIS_TRIGGER,
    DEFAULT_MAX_CANDIDATES,
    VERDICT_ACCEPT_THRESHOLD,
    VisionTextProvider,
    confirm_duplicate,
    is_confirmed,
    should_run_deep_analysis,
)
from shoebox.matcher import find_candidates
from shoebox.models import CandidateReceipt, DuplicateVerdict, MatchResult
from shoebox.state_store import (
    find_by_bill_reference,
    query_amount_window,
    save_receipt,
    write_audit,
)


class DuplicateBillReferenceError(Exception):
    """The owner already banked a receipt with the same bill reference."""

    def __init__(self, bill_reference: str, existing_receipt_id: str):
        self.bill_reference = bill_reference
        self.existing_receipt_id = existing_receipt_id
        super().__init__(f"Receipt with reference {bill_reference} already exists: {existing_receipt_id}")


@dataclass
class UploadOutcome:
    receipt_id: str
    status: str
    duplicate_status: str
    duplicate_of: Optional[str]
    duplicate_confidence: float
    potential_duplicates: List[Dict] = field(default_factory=list)
    verdict: Optional[DuplicateVerdict] = None


def decide_duplicate_status(
    matches: List[MatchResult],
    verdict: Optional[DuplicateVerdict],
    cfg: Optional[Dict] = None,
) -> Tuple[str, str, Optional[str], float]:
    """Returns (status, duplicate_status, duplicate_of, duplicate_confidence).

    Only a confirmed deep verdict flags the receipt; matcher candidates alone
    stay advisory.
    """
    th = (cfg or {}).get("thresholds", {})
    accept = th.get("verdict_accept", VERDICT_ACCEPT_THRESHOLD)

    if verdict is not None and matches and is_confirmed(verdict, accept):
        duplicate_of = verdict.matched_record_id or matches[0].record_id
        return "flagged", "detected", duplicate_of, verdict.confidence
    return "processed", "none", None, 0.0


def run_duplicate_checks(
    candidate: CandidateReceipt,
    provider: Optional[VisionTextProvider] = None,
    cfg: Optional[Dict] = None,
) -> Tuple[List[MatchResult], Optional[DuplicateVerdict]]:
    """Matcher on the historical window, then the deep analysis when the gate opens."""
    cfg = cfg or load_duplicate_config()
    window_cfg = cfg.get("window", {})
    th = cfg.get("thresholds", {})

    owner_id = candidate.owner_id if window_cfg.get("scope_to_owner", True) else None
    window = query_amount_window(
        candidate.amount,
        owner_id=owner_id,
        tolerance=window_cfg.get("amount_tolerance", 0.05),
        limit=window_cfg.get("limit", 50),
    )
    matches = find_candidates(candidate, window, cfg)
    print(f"  [duplicates] window={len(window)} candidates={len(matches)}")

    verdict = None
    if should_run_deep_analysis(matches, th.get("deep_analysis", DEEP_ANALYSIS_TRIGGER)):
        best = matches[0]
        if provider is None:
            print(f"  ⚠️ Top candidate {best.record_id} at {best.confidence} but no vision provider configured")
        else:
            print(f"  🔍 Deep analysis: top candidate {best.record_id} confidence={best.confidence}")
            max_candidates = cfg.get("provider", {}).get("max_candidates", DEFAULT_MAX_CANDIDATES)
            verdict = confirm_duplicate(candidate.image_bytes, matches, provider, max_candidates)
            if verdict.error:
                write_audit("WARNING", "system", "deep_analysis", [best.record_id], best.confidence, "provider_error", verdict.error)
    return matches, verdict


def process_upload(
    candidate: CandidateReceipt,
    provider: Optional[VisionTextProvider] = None,
    cfg: Optional[Dict] = None,
    receipt_id: Optional[str] = None,
) -> UploadOutcome:
    """Run duplicate detection for a new upload and persist the result.

    Raises DuplicateBillReferenceError when the owner already has a receipt
    with the same bill reference.
    """
    cfg = cfg or load_duplicate_config()

    if candidate.bill_reference:
        existing = find_by_bill_reference(candidate.owner_id, candidate.bill_reference)
        if existing:
            print(f"  🚫 Duplicate bill reference detected: {candidate.bill_reference}")
            write_audit("INFO", candidate.owner_id, "bill_reference_duplicate", [existing], None, "rejected")
            raise DuplicateBillReferenceError(candidate.bill_reference, existing)

    matches, verdict = run_duplicate_checks(candidate, provider, cfg)
    status, duplicate_status, duplicate_of, duplicate_confidence = decide_duplicate_status(matches, verdict, cfg)

    cap = cfg.get("potential_duplicates_cap", 3)
    potential = [m.to_dict() for m in matches[:cap]]

    receipt_id = receipt_id or str(uuid.uuid4())
    save_receipt(
        receipt_id,
        candidate,
        status=status,
        duplicate_status=duplicate_status,
        duplicate_of=duplicate_of,
        duplicate_confidence=duplicate_confidence,
        potential_duplicates=potential,
    )
    targets = [receipt_id] + ([duplicate_of] if duplicate_of else [])
    write_audit(
        "INFO",
        candidate.owner_id,
        "upload",
        targets,
        matches[0].confidence if matches else 0,
        duplicate_status,
    )
    print(f"  ✅ Receipt saved: {receipt_id} (status={status}, duplicate={duplicate_status})")

    return UploadOutcome(
        receipt_id=receipt_id,
        status=status,
        duplicate_status=duplicate_status,
        duplicate_of=duplicate_of,
        duplicate_confidence=duplicate_confidence,
        potential_duplicates=potential,
        verdict=verdict,
    )
