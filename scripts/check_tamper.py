import argparse
import json
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shoebox.config_loader import load_duplicate_config
from shoebox.state_store import init_db
from shoebox.tamper_check import ReceiptNotFoundError, run_tamper_check
from shoebox.vision_client import VisionClient


def check_tamper(owner_id: str, receipt_id: str, image_path: str) -> int:
    with open(image_path, "rb") as f:
        image = f.read()

    cfg = load_duplicate_config()
    init_db()

    provider = VisionClient.from_config(cfg)
    if provider is None:
        print("❌ No vision provider configured (VISION_API_KEY, VISION_BASE_URL, VISION_MODEL)")
        return 1

    try:
        result = run_tamper_check(receipt_id, owner_id, image, provider)
    except ReceiptNotFoundError as e:
        print(f"❌ {e}")
        return 1

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--owner-id", required=True)
    parser.add_argument("--receipt-id", required=True)
    parser.add_argument("--image", required=True, help="stored receipt image file")
    args = parser.parse_args()

    sys.exit(check_tamper(args.owner_id, args.receipt_id, args.image))
