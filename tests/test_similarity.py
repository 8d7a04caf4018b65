from datetime import date

import pytest

from statement_auditor.analysis.similarity import (
    amount_similarity,
    composite_transaction_score,
    edit_distance,
    normalize_description,
    temporal_weight,
    text_similarity,
    token_similarity,
)
from statement_auditor.models import SimilarityWeights


def test_normalize_description_folds_case_and_spaces():
    assert normalize_description("  Frais   DE  Tenue ") == "frais de tenue"


def test_token_similarity_ignores_punctuation():
    assert token_similarity("FRAIS TENUE COMPTE", "frais-tenue compte") == 1.0
    assert token_similarity("", "") == 1.0
    assert token_similarity("frais carte", "frais virement") == pytest.approx(1 / 3)


def test_edit_distance_uses_normalized_text():
    assert edit_distance("ABC", "abd") == 1
    assert edit_distance("frais  carte", "FRAIS CARTE") == 0


def test_text_similarity_bounds():
    assert text_similarity("COMMISSION VIREMENT", "commission virement") == 1.0
    assert text_similarity("", "") == 1.0
    assert 0.0 <= text_similarity("FRAIS CARTE VISA", "AGIOS TRIMESTRIELS") < 0.5


def test_amount_similarity_tolerance_and_decay():
    assert amount_similarity(-5000, -5040, 0.01) == 1.0
    assert amount_similarity(1000, 500, 0.01) == pytest.approx(0.5)
    assert amount_similarity(100, -100, 0.0) == 1.0
    assert amount_similarity(0, 0, 0.0) == 1.0


def test_temporal_weight_halves_every_half_life():
    assert temporal_weight(0, 7) == 1.0
    assert temporal_weight(7, 7) == pytest.approx(0.5)
    assert temporal_weight(-14, 7) == pytest.approx(0.25)
    with pytest.raises(ValueError):
        temporal_weight(1, 0)


def test_composite_score_is_symmetric_and_deterministic(make_transaction):
    weights = SimilarityWeights()
    first = make_transaction("COMMISSION VIREMENT SEPA", -2500, date(2024, 3, 1))
    second = make_transaction("COMM. VIREMENT", -2450, date(2024, 3, 4))

    forward = composite_transaction_score(first, second, weights)
    backward = composite_transaction_score(second, first, weights)

    assert forward == backward
    assert forward == composite_transaction_score(first, second, weights)
    assert 0.0 <= forward <= 1.0


def test_composite_score_of_identical_charges(make_transaction):
    first = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 5))
    second = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 7))

    score = composite_transaction_score(first, second, SimilarityWeights())

    assert score == pytest.approx(0.4 + 0.4 + 0.2 * 2 ** (-2 / 7))


def test_composite_score_rejects_weights_not_summing_to_one(make_transaction):
    first = make_transaction("FRAIS", -100, date(2024, 3, 5))
    with pytest.raises(ValueError):
        composite_transaction_score(first, first, SimilarityWeights(amount=0.5, text=0.5, time=0.2))
