import argparse
import json
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shoebox.config_loader import load_duplicate_config
from shoebox.duplicate_workflow import DuplicateBillReferenceError, process_upload
from shoebox.models import CandidateReceipt
from shoebox.state_store import init_db
from shoebox.vision_client import VisionClient


def check_receipt(owner_id: str, ocr_path: str, image_path: str, dry_run: bool = False) -> int:
    """Bank one extracted receipt and report its duplicate status."""
    with open(ocr_path, "r", encoding="utf-8") as f:
        ocr = json.load(f)
    with open(image_path, "rb") as f:
        image = f.read()

    cfg = load_duplicate_config()
    init_db()

    candidate = CandidateReceipt.from_ocr(owner_id, ocr, image)
    print(f"📄 Checking receipt for {owner_id}: {candidate.merchant} / {candidate.amount} / {candidate.date}")

    provider = None if dry_run else VisionClient.from_config(cfg)
    if provider is None:
        print("   Deep analysis disabled (no provider configured or dry run)")

    try:
        outcome = process_upload(candidate, provider=provider, cfg=cfg)
    except DuplicateBillReferenceError as e:
        print(f"🚫 {e}")
        return 2

    print(json.dumps(
        {
            "receiptId": outcome.receipt_id,
            "status": outcome.status,
            "duplicateStatus": outcome.duplicate_status,
            "duplicateOf": outcome.duplicate_of,
            "duplicateConfidence": outcome.duplicate_confidence,
            "potentialDuplicates": outcome.potential_duplicates,
        },
        indent=2,
        ensure_ascii=False,
    ))
    return 1 if outcome.duplicate_status == "detected" else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--owner-id", required=True)
    parser.add_argument("--ocr-json", required=True, help="OCR extraction result (JSON file)")
    parser.add_argument("--image", required=True, help="receipt image file")
    parser.add_argument("--dry-run", action="store_true", help="skip the vision model call")
    args = parser.parse_args()

    sys.exit(check_receipt(args.owner_id, args.ocr_json, args.image, args.dry_run))
