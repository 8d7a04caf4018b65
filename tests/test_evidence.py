from datetime import date

import pytest

from statement_auditor.evidence import anomaly_id, build_anomaly, classify_severity, format_amount
from statement_auditor.models import AnomalyStatus, AnomalyType, Evidence, Severity


@pytest.fixture
def fee(make_transaction):
    return make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 5), id="FEE-1")


@pytest.fixture
def evidence():
    return [Evidence(kind="DESCRIPTION", description="Bank label", value="FRAIS CARTE VISA")]


@pytest.mark.parametrize(
    ("amount", "severity"),
    [
        (0, Severity.LOW),
        (5000, Severity.LOW),
        (5000.01, Severity.MEDIUM),
        (20000, Severity.MEDIUM),
        (20000.01, Severity.HIGH),
        (50000, Severity.HIGH),
        (50000.01, Severity.CRITICAL),
    ],
)
def test_severity_boundaries_are_strict(amount, severity):
    assert classify_severity(amount) == severity


def test_compliance_breach_is_always_critical():
    assert classify_severity(10, is_compliance_or_fraud=True) == Severity.CRITICAL


def test_anomaly_id_is_stable(make_transaction):
    first = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 5), id="A")
    second = make_transaction("FRAIS CARTE VISA", -5000, date(2024, 3, 7), id="B")

    identifier = anomaly_id(AnomalyType.DUPLICATE_FEE, [first, second])

    assert identifier == anomaly_id(AnomalyType.DUPLICATE_FEE, [second, first])
    assert identifier.startswith("DUP-20240305-")
    assert identifier != anomaly_id(AnomalyType.GHOST_FEE, [first, second])


def test_build_anomaly_rounds_and_scores(fee, evidence):
    anomaly = build_anomaly(AnomalyType.OVERCHARGE, [fee], 100.004, 0.123456, evidence, "Claim it back.")

    assert anomaly.amount == 100.0
    assert anomaly.confidence == 0.1235
    assert anomaly.severity == Severity.LOW
    assert anomaly.status == AnomalyStatus.PENDING
    assert anomaly.ai_analysis is None


def test_unauthorized_is_critical(fee, evidence):
    anomaly = build_anomaly(AnomalyType.UNAUTHORIZED, [fee], 10, 1.0, evidence, "Claim it back.")
    assert anomaly.severity == Severity.CRITICAL


@pytest.mark.parametrize(
    ("amount", "confidence", "has_evidence"),
    [(-1, 0.5, True), (10, 1.5, True), (10, -0.1, True), (10, 0.5, False)],
)
def test_build_anomaly_rejects_invalid_findings(fee, evidence, amount, confidence, has_evidence):
    with pytest.raises(ValueError):
        build_anomaly(AnomalyType.OVERCHARGE, [fee], amount, confidence, evidence if has_evidence else [], "x")


def test_status_review(fee, evidence):
    anomaly = build_anomaly(AnomalyType.GHOST_FEE, [fee], 5000, 0.9, evidence, "Ask the bank.")

    assert anomaly.with_status(AnomalyStatus.PENDING) is anomaly

    confirmed = anomaly.with_status(AnomalyStatus.CONFIRMED, reviewed_by="auditor", notes="checked")
    assert confirmed.status == AnomalyStatus.CONFIRMED
    assert confirmed.reviewed_by == "auditor"
    assert confirmed.reviewed_at is not None
    assert (confirmed.amount, confirmed.confidence, confirmed.evidence) == (
        anomaly.amount,
        anomaly.confidence,
        anomaly.evidence,
    )
    assert anomaly.status == AnomalyStatus.PENDING

    assert confirmed.with_status(AnomalyStatus.CONFIRMED) is confirmed
    with pytest.raises(ValueError):
        confirmed.with_status(AnomalyStatus.DISMISSED)


def test_format_amount():
    assert format_amount(1234567.4) == "1 234 567 XAF"
    assert format_amount(150, "EUR") == "150 EUR"
