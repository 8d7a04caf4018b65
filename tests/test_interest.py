from datetime import date

import pytest

from statement_auditor.detectors.interest import InterestVerifier, day_weight, select_daily_rate
from statement_auditor.models import (
    AnomalyType,
    DetectionThresholds,
    InterestRate,
    InterestThresholds,
    TransactionType,
)
from statement_auditor.tariffs import TariffResolver


@pytest.fixture
def conditions(make_conditions):
    return make_conditions(interest_rates=[InterestRate(type="authorized", rate=0.18)])


def _overdrawn_month(make_transaction, charge_amount, charge_on=date(2024, 7, 1), opened_on=date(2024, 5, 31)):
    opening = make_transaction("VIREMENT FOURNISSEUR", -100000, opened_on, balance=-100000, id="OPEN")
    charge = make_transaction(
        "AGIOS",
        -charge_amount,
        charge_on,
        balance=-100000 - charge_amount,
        id="CHARGE",
        type=TransactionType.INTEREST,
    )
    return [opening, charge]


def test_recomputes_constant_balance(make_transaction, conditions):
    opening, charge = _overdrawn_month(make_transaction, 1650)

    result = InterestVerifier().recompute(charge, [opening, charge], TariffResolver([conditions]))

    assert result.start == date(2024, 6, 1)
    assert result.end == date(2024, 6, 30)
    assert result.interest == pytest.approx(1500)
    assert result.debit_days == 30
    assert result.opening_balance == -100000


def test_overcharged_interest_is_reported(make_transaction, make_context, conditions):
    transactions = _overdrawn_month(make_transaction, 1650)

    report = InterestVerifier().detect(make_context(transactions, [conditions]))

    assert len(report.anomalies) == 1
    anomaly = report.anomalies[0]
    assert anomaly.type == AnomalyType.INTEREST_ERROR
    assert anomaly.amount == pytest.approx(150)
    assert [t.id for t in anomaly.transactions] == ["CHARGE"]
    signed = next(item for item in anomaly.evidence if item.kind == "SIGNED_DIFFERENCE")
    assert signed.value == pytest.approx(150)
    recomputation = anomaly.evidence[0]
    assert recomputation.expected_value == pytest.approx(1500)
    assert recomputation.applied_value == pytest.approx(1650)
    assert any(item.kind == "EFFECTIVE_RATE" for item in anomaly.evidence)


def test_charge_within_tolerance_is_accepted(make_transaction, make_context, conditions):
    # tolerance is max(1, 1% of 1,500) = 15
    transactions = _overdrawn_month(make_transaction, 1510)

    assert InterestVerifier().detect(make_context(transactions, [conditions])).anomalies == []


def test_opening_balance_from_history(make_transaction, make_context, conditions):
    opening, charge = _overdrawn_month(make_transaction, 1650)

    report = InterestVerifier().detect(make_context([charge], [conditions], history=[opening]))

    assert [a.amount for a in report.anomalies] == [pytest.approx(150)]


def test_undercharge_is_reported_with_negative_difference(make_transaction, make_context, make_conditions):
    grid = make_conditions(interest_rates=[InterestRate(type="authorized", rate=0.18)])
    # July has 31 days: 31 x 50 = 1,550 recomputed
    transactions = _overdrawn_month(make_transaction, 1500, date(2024, 8, 1), date(2024, 6, 28))

    anomalies = InterestVerifier().detect(make_context(transactions, [grid])).anomalies

    assert len(anomalies) == 1
    assert anomalies[0].amount == pytest.approx(50)
    signed = next(item for item in anomalies[0].evidence if item.kind == "SIGNED_DIFFERENCE")
    assert signed.value == pytest.approx(-50)


def test_undercharges_can_be_ignored(make_transaction, make_context, conditions):
    transactions = _overdrawn_month(make_transaction, 1500, date(2024, 8, 1), date(2024, 6, 28))
    thresholds = DetectionThresholds(interest=InterestThresholds(report_undercharges=False))

    context = make_context(transactions, [conditions], thresholds=thresholds)

    assert InterestVerifier().detect(context).anomalies == []


def test_thirty_360_ignores_the_31st(make_transaction, make_context, make_conditions):
    grid = make_conditions(
        interest_rates=[InterestRate(type="authorized", rate=0.18, day_count_convention="30/360")]
    )
    transactions = _overdrawn_month(make_transaction, 1500, date(2024, 8, 1), date(2024, 6, 28))

    assert InterestVerifier().detect(make_context(transactions, [grid])).anomalies == []


def test_missing_rate_skips_the_charge(make_transaction, make_context, make_conditions):
    transactions = _overdrawn_month(make_transaction, 1650)

    assert InterestVerifier().detect(make_context(transactions, [make_conditions()])).anomalies == []


def test_day_weight_thirty_360():
    assert day_weight(date(2024, 7, 31), "30/360") == 0
    assert day_weight(date(2024, 7, 30), "30/360") == 1
    assert day_weight(date(2024, 2, 29), "30/360") == 2
    assert day_weight(date(2023, 2, 28), "30/360") == 3
    assert day_weight(date(2024, 7, 31), "ACT/360") == 1


def test_daily_rate_depends_on_authorized_limit(make_conditions):
    grid = make_conditions(
        interest_rates=[
            InterestRate(type="authorized", rate=0.14),
            InterestRate(type="unauthorized", rate=0.20),
        ],
        authorized_overdraft_limit=500000,
    )
    resolver = TariffResolver([grid])
    on = date(2024, 3, 1)

    assert select_daily_rate(resolver, on, "BICEC", -400000).rate == 0.14
    assert select_daily_rate(resolver, on, "BICEC", -600000).rate == 0.20

    no_limit = TariffResolver([grid.model_copy(update={"authorized_overdraft_limit": None})])
    assert select_daily_rate(no_limit, on, "BICEC", -1000).rate == 0.20
