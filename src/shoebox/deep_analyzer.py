#!/usr/bin/env python
"""
Deep duplicate analysis
Asks a vision model whether a new receipt photo depicts the same purchase
as one of the matcher's top candidates.
"""

import json
import math
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from shoebox.models import DuplicateVerdict, MatchResult


# Matcher confidence (0-100) the top candidate needs before the model is asked.
DEEP_ANALYSIS_TRIGGER = 80

# Verdict confidence (0.0-1.0) the model must exceed for a confirmed duplicate.
VERDICT_ACCEPT_THRESHOLD = 0.7

DEFAULT_MAX_CANDIDATES = 5


class VisionTextProvider(ABC):
    """Image + prompt in, raw text out."""

    @abstractmethod
    def send(self, image: bytes, prompt: str) -> str:
        raise NotImplementedError


def should_run_deep_analysis(matches: List[MatchResult], trigger: int = DEEP_ANALYSIS_TRIGGER) -> bool:
    return bool(matches) and matches[0].confidence >= trigger


def is_confirmed(verdict: DuplicateVerdict, threshold: float = VERDICT_ACCEPT_THRESHOLD) -> bool:
    return verdict.is_duplicate is True and verdict.confidence > threshold


def _candidate_summary(match: MatchResult) -> Dict:
    if match.record is not None:
        summary = match.record.summary()
    else:
        summary = {"id": match.record_id, "merchant": None, "amount": None, "date": None, "items": ""}
    summary["id"] = match.record_id
    return summary


def build_prompt(candidates: List[MatchResult]) -> str:
    existing = [_candidate_summary(c) for c in candidates]
    return f"""Analyze this receipt image and compare it with the following existing receipts to determine if it's a duplicate submission:

Existing receipts to compare:
{json.dumps(existing, indent=2, ensure_ascii=False)}

Consider:
1. Same merchant/establishment
2. Same total amount
3. Same date or very close dates
4. Same items purchased
5. Even if photos are taken from different angles, quality or lighting

Return ONLY a JSON object:
{{
  "isDuplicate": boolean,
  "confidence": 0.0-1.0,
  "matchedReceiptId": "id of matched receipt or null",
  "reasoning": "brief explanation"
}}"""


def extract_json_object(text: str) -> Dict:
    """Return the first well-formed JSON object embedded in text.

    Raises ValueError when the text holds none.
    """
    if not isinstance(text, str):
        raise ValueError("provider response is not text")
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    raise ValueError("no JSON object found in provider response")


def parse_verdict(text: str, candidate_ids: Iterable[str] = ()) -> DuplicateVerdict:
    data = extract_json_object(text)

    is_duplicate = data.get("isDuplicate")
    if not isinstance(is_duplicate, bool):
        raise ValueError(f"isDuplicate must be a boolean, got {is_duplicate!r}")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
        raise ValueError(f"confidence must be a number, got {confidence!r}")
    confidence = max(0.0, min(1.0, float(confidence)))

    # only ids we handed over may become a duplicate link
    matched = data.get("matchedReceiptId")
    allowed = {str(c) for c in candidate_ids}
    matched_id: Optional[str] = str(matched) if matched is not None else None
    if matched_id is not None and matched_id not in allowed:
        matched_id = None

    reasoning = data.get("reasoning")
    return DuplicateVerdict(
        is_duplicate=is_duplicate,
        confidence=confidence,
        matched_record_id=matched_id,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def confirm_duplicate(
    image: bytes,
    candidates: List[MatchResult],
    provider: VisionTextProvider,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> DuplicateVerdict:
    """Ask the provider for a same-purchase verdict. Never raises.

    Any failure (network, timeout, malformed or non-JSON response, missing
    fields) gives a non-duplicate verdict with confidence 0 and the error note.
    """
    if not candidates:
        return DuplicateVerdict(is_duplicate=False, confidence=0.0)

    shortlist = candidates[:max_candidates]
    try:
        prompt = build_prompt(shortlist)
        raw = provider.send(image, prompt)
        return parse_verdict(raw, [c.record_id for c in shortlist])
    except Exception as e:
        print(f"  ⚠️ Deep duplicate analysis failed: {e}")
        return DuplicateVerdict(is_duplicate=False, confidence=0.0, error=str(e))
