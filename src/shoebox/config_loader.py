import copy
import os

import yaml
from dotenv import load_dotenv


DEFAULTS = {
    "thresholds": {"match_emit": 60, "deep_analysis": 80, "verdict_accept": 0.7},
    "merchant": {"match": 0.7, "same": 0.9},
    "weights": {"amount": 40, "date": 35, "merchant": 25},
    "window": {"amount_tolerance": 0.05, "limit": 50, "scope_to_owner": True},
    "provider": {"timeout": 30, "max_candidates": 5, "max_tokens": 1024, "temperature": 0.1},
    "potential_duplicates_cap": 3,
}


def _config_path() -> str:
    default = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config", "duplicates.yml")
    return os.getenv("SHOEBOX_CONFIG", default)


def load_duplicate_config() -> dict:
    load_dotenv()
    path = _config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}

    # shallow merge defaults
    merged = copy.deepcopy(DEFAULTS)
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v

    # environment wins over the file
    provider = merged["provider"]
    provider["api_key"] = os.getenv("VISION_API_KEY") or provider.get("api_key")
    provider["base_url"] = os.getenv("VISION_BASE_URL") or provider.get("base_url")
    provider["model"] = os.getenv("VISION_MODEL") or provider.get("model")
    return merged
