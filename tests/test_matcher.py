from datetime import date
from decimal import Decimal

from conftest import make_candidate, make_record
from shoebox.matcher import (
    MATCH_EMIT_THRESHOLD,
    find_candidates,
    normalize_amount,
    normalize_date,
    score_match,
)


def test_scenario_identical_receipt_scores_100():
    cand = make_candidate("50.00", date(2024, 3, 1), "Starbucks KLCC")
    rec = make_record("r1", "50.00", date(2024, 3, 1), "STARBUCKS KLCC ")

    results = find_candidates(cand, [rec])

    assert len(results) == 1
    m = results[0]
    assert m.record_id == "r1"
    assert m.confidence == 100
    assert m.reasons == ["Same amount", "Same date", "Same merchant"]
    assert m.merchant_similarity == 1.0
    assert m.record is rec


def test_different_merchant_same_amount_and_date_is_75():
    cand = make_candidate(merchant="Starbucks KLCC")
    rec = make_record("r1", merchant="McDonald's Bangsar")

    results = find_candidates(cand, [rec])

    assert [m.confidence for m in results] == [75]
    assert results[0].reasons == ["Same amount", "Same date"]


def test_amount_and_merchant_without_date_is_65():
    cand = make_candidate(day=date(2024, 3, 1))
    rec = make_record("r1", day=date(2024, 3, 2))

    results = find_candidates(cand, [rec])

    assert results[0].confidence == 65
    assert results[0].reasons == ["Same amount", "Same merchant"]


def test_date_and_merchant_without_amount_hits_threshold_exactly():
    cand = make_candidate(amount="50.00")
    rec = make_record("r1", amount="51.00")

    results = find_candidates(cand, [rec])

    assert results[0].confidence == 60 == MATCH_EMIT_THRESHOLD
    assert results[0].reasons == ["Same date", "Same merchant"]


def test_single_signal_never_emitted():
    cand = make_candidate("50.00", date(2024, 3, 1), "Starbucks")
    only_amount = make_record("a", "50.00", date(2024, 1, 9), "Uniqlo")
    only_date = make_record("d", "49.00", date(2024, 3, 1), "Uniqlo")
    only_merchant = make_record("m", "49.00", date(2024, 1, 9), "Starbucks")

    for rec in (only_amount, only_date, only_merchant):
        confidence, _, _ = score_match(cand, rec)
        assert confidence <= 40

    assert find_candidates(cand, [only_amount, only_date, only_merchant]) == []


def test_similar_merchant_label():
    # 2 substitutions over 10 chars -> 0.8
    cand = make_candidate(merchant="Marks Mart")
    rec = make_record("r1", merchant="Marks Mall")

    results = find_candidates(cand, [rec])

    assert results[0].confidence == 100
    assert results[0].reasons[-1] == "Similar merchant"


def test_one_extra_letter_is_same_merchant():
    cand = make_candidate(merchant="Kopi Kenangan")
    rec = make_record("r1", merchant="Kopi Kenangann")

    m = find_candidates(cand, [rec])[0]

    assert m.reasons[-1] == "Same merchant"
    assert m.confidence == 100


def test_merchant_similarity_exactly_point_seven_does_not_match():
    cand = make_candidate(merchant="abcdefghij")
    rec = make_record("r1", merchant="abcdefgxyz")

    confidence, reasons, sim = score_match(cand, rec)

    assert sim == 0.7
    assert confidence == 75
    assert "Similar merchant" not in reasons


def test_merchant_similarity_exactly_point_nine_is_similar_not_same():
    cand = make_candidate(merchant="abcdefghij")
    rec = make_record("r1", merchant="abcdefghix")

    _, reasons, sim = score_match(cand, rec)

    assert sim == 0.9
    assert reasons[-1] == "Similar merchant"


def test_linked_duplicates_are_never_candidates():
    cand = make_candidate()
    anchor = make_record("orig")
    dup = make_record("dup", linked_duplicate_id="orig")

    results = find_candidates(cand, [dup, anchor])

    assert [m.record_id for m in results] == ["orig"]


def test_empty_window():
    assert find_candidates(make_candidate(), []) == []
    assert find_candidates(make_candidate(), None) == []


def test_sorted_by_confidence_ties_keep_window_order():
    cand = make_candidate("50.00", date(2024, 3, 1), "Starbucks KLCC")
    window = [
        make_record("newest-75", merchant="Zus Coffee"),
        make_record("mid-100"),
        make_record("older-75", merchant="Tealive"),
        make_record("oldest-100"),
    ]

    results = find_candidates(cand, window)

    assert [m.record_id for m in results] == ["mid-100", "oldest-100", "newest-75", "older-75"]


def test_amount_normalized_to_cents():
    cand = make_candidate(amount="50.004")
    assert "Same amount" in score_match(cand, make_record("r", amount="50.00"))[1]
    assert "Same amount" not in score_match(cand, make_record("r", amount="50.01"))[1]


def test_missing_fields_degrade_without_raising():
    cand = make_candidate(amount=None, day=None, merchant=None)
    rec = make_record("r1", amount=None, day=None, merchant=None)

    confidence, reasons, sim = score_match(cand, rec)

    assert (confidence, reasons, sim) == (0, [], 0.0)
    assert find_candidates(cand, [rec]) == []


def test_missing_dates_never_match():
    cand = make_candidate(day=None)
    rec = make_record("r1", day=None)

    results = find_candidates(cand, [rec])

    assert results[0].confidence == 65
    assert "Same date" not in results[0].reasons


def test_zero_and_negative_amounts_are_scored_as_is():
    assert score_match(make_candidate(amount="0"), make_record("r", amount="0"))[0] == 100
    assert score_match(make_candidate(amount="-12.50"), make_record("r", amount="-12.50"))[0] == 100


def test_unfiltered_window_is_scored_correctly():
    cand = make_candidate("50.00")
    window = [make_record(str(i), amount=str(10 * i)) for i in range(1, 11)]

    results = find_candidates(cand, window)

    assert results[0].record_id == "5"
    assert results[0].confidence == 100
    assert [m.confidence for m in results[1:]] == [60] * 9
    assert [m.record_id for m in results[1:]] == ["1", "2", "3", "4", "6", "7", "8", "9", "10"]


def test_thresholds_from_config(cfg):
    cfg["thresholds"]["match_emit"] = 40
    cand = make_candidate("50.00", date(2024, 3, 1), "Starbucks")
    rec = make_record("r", "50.00", date(2024, 1, 9), "Uniqlo")

    results = find_candidates(cand, [rec], cfg)

    assert [m.confidence for m in results] == [40]


def test_normalizers():
    assert normalize_amount("RM 1,234.565") == Decimal("1234.57")
    assert normalize_amount(12) == Decimal("12.00")
    assert normalize_amount("abc") is None
    assert normalize_date("2024-03-01T10:15:00") == "2024-03-01"
    assert normalize_date("01/03/2024") == "2024-03-01"
    assert normalize_date(date(2024, 3, 1)) == "2024-03-01"
    assert normalize_date("not a date") is None
    assert normalize_date(None) is None


def test_two_blank_merchants_do_not_count_as_same_merchant():
    cand = make_candidate("50.00", date(2024, 3, 1), None)
    rec = make_record("r1", "50.00", date(2024, 3, 2), "  ")

    assert score_match(cand, rec) == (40, ["Same amount"], 0.0)
    assert find_candidates(cand, [rec]) == []
