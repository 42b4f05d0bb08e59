from rapidfuzz.distance import Levenshtein


def normalize_merchant(text) -> str:
    if not text:
        return ""
    return str(text).strip().casefold()


def similarity(a, b) -> float:
    """Levenshtein similarity in [0, 1] after case-folding and trimming.

    Unit cost for insertion, deletion and substitution, no transposition
    discount. Compared by code point, so multi-byte merchant names are safe.
    """
    s1 = normalize_merchant(a)
    s2 = normalize_merchant(b)
    if s1 == s2:
        return 1.0 if s1 else 0.0
    if not s1 or not s2:
        return 0.0
    longest = max(len(s1), len(s2))
    distance = Levenshtein.distance(s1, s2)
    return (longest - distance) / longest
