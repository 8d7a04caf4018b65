import math

import pytest

from statement_auditor.analysis.entropy import (
    description_suspicion,
    is_round_amount,
    looks_random,
    normalized_entropy,
    round_amount_score,
    shannon_entropy,
    word_entropy,
)


def test_shannon_entropy_basics():
    assert shannon_entropy("") == 0.0
    assert shannon_entropy("aaaa") == 0.0
    assert shannon_entropy("ab") == pytest.approx(1.0)
    assert shannon_entropy("FRAIS") == pytest.approx(math.log2(5))


def test_shannon_entropy_ignores_case_and_extra_spaces():
    assert shannon_entropy("Frais  Divers") == shannon_entropy("frais divers")


def test_word_and_normalized_entropy():
    assert word_entropy("taxe taxe") == 0.0
    assert word_entropy("frais carte") == pytest.approx(1.0)
    assert normalized_entropy("abcd") == pytest.approx(1.0)
    assert normalized_entropy("a") == 0.0


def test_description_suspicion_for_generic_labels():
    # "^frais$" pattern, short label, single repeated word
    assert description_suspicion("FRAIS") == pytest.approx(0.55)
    assert description_suspicion("TAXE TAXE") == pytest.approx(0.25)
    assert description_suspicion("COMMISSION VIREMENT EMIS REF 2024-118 FOURNISSEUR") < 0.3


def test_looks_random():
    assert looks_random("X9#K2$P7@Q1!")
    assert not looks_random("FRAIS DE TENUE DE COMPTE")
    assert not looks_random("")


def test_round_amounts():
    assert is_round_amount(5000)
    assert is_round_amount(-2500)
    assert not is_round_amount(1234)
    assert not is_round_amount(50)

    assert round_amount_score(1000) == 1.0
    assert round_amount_score(1200) == pytest.approx(2 / 3)
    assert round_amount_score(1234) == 0.0
    assert round_amount_score(0) == 0.0
