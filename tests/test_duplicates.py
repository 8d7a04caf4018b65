from datetime import date, timedelta

import pytest

from statement_auditor.detectors.duplicates import DuplicateFeeDetector
from statement_auditor.models import AnomalyType, Severity


@pytest.fixture
def statement(make_transaction):
    """100 transactions, two of them the same 5,000 card fee two days apart."""
    transactions = []
    start = date(2024, 3, 1)
    for index in range(98):
        amount = 25000 + index * 150 if index % 3 else -(10000 + index * 275)
        label = "VERSEMENT CLIENT" if amount > 0 else "PAIEMENT FOURNISSEUR"
        transactions.append(make_transaction(f"{label} {index}", amount, start + timedelta(days=index % 28)))
    transactions.append(make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 5), id="FEE-1"))
    transactions.append(make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 7), id="FEE-2"))
    return transactions


def test_identical_fees_form_one_duplicate(statement, make_context):
    report = DuplicateFeeDetector().detect(make_context(statement))

    assert len(report.anomalies) == 1
    anomaly = report.anomalies[0]
    assert anomaly.type == AnomalyType.DUPLICATE_FEE
    assert anomaly.amount == 5000
    # 5,000 is not above the MEDIUM boundary
    assert anomaly.severity == Severity.LOW
    assert [t.id for t in anomaly.transactions] == ["FEE-1", "FEE-2"]
    assert anomaly.confidence == pytest.approx(0.4 + 0.4 + 0.2 * 2 ** (-2 / 7), abs=1e-4)
    kinds = {item.kind for item in anomaly.evidence}
    assert {"DUPLICATE_GROUP", "PAIR_SIMILARITY", "TIME_GAP", "EXACT_AMOUNT"} <= kinds
    assert report.excluded == []


def test_detection_is_deterministic(statement, make_context):
    first = DuplicateFeeDetector().detect(make_context(statement)).anomalies
    second = DuplicateFeeDetector().detect(make_context(list(reversed(statement)))).anomalies

    assert [a.id for a in first] == [a.id for a in second]
    assert [a.amount for a in first] == [a.amount for a in second]


def test_distinct_services_are_not_duplicates(make_transaction, make_context):
    transactions = [
        make_transaction("COMMISSION VIREMENT SEPA", -2500, date(2024, 3, 1)),
        make_transaction("FRAIS CARTE VISA", -2500, date(2024, 3, 12)),
        make_transaction("COMMISSION RETRAIT DAB", -2500, date(2024, 3, 2)),
    ]

    report = DuplicateFeeDetector().detect(make_context(transactions))

    assert report.anomalies == []


def test_fees_outside_window_are_not_grouped(make_transaction, make_context):
    transactions = [
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 1)),
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 9)),
    ]

    assert DuplicateFeeDetector().detect(make_context(transactions)).anomalies == []


def test_three_charges_form_a_single_group(make_transaction, make_context):
    transactions = [
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 1)),
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 2)),
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 3)),
    ]

    anomalies = DuplicateFeeDetector().detect(make_context(transactions)).anomalies

    assert len(anomalies) == 1
    assert anomalies[0].amount == 10000
    assert anomalies[0].severity == Severity.MEDIUM


def test_accounts_are_scanned_separately(make_transaction, make_context):
    transactions = [
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 1), account_number="CM-001"),
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 2), account_number="CM-002"),
    ]

    assert DuplicateFeeDetector().detect(make_context(transactions)).anomalies == []


def test_malformed_record_is_excluded(make_transaction, make_context):
    transactions = [
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 1)),
        make_transaction("FRAIS CARTE VISA", float("nan"), date(2024, 3, 2), id="BROKEN"),
        make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 2)),
    ]

    report = DuplicateFeeDetector().detect(make_context(transactions))

    assert report.excluded == ["BROKEN"]
    assert len(report.anomalies) == 1
    assert "BROKEN" not in [t.id for t in report.anomalies[0].transactions]
