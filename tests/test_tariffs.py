from datetime import date

import pytest

from statement_auditor.models import FeeSchedule, FeeTier, InterestRate, TransactionType
from statement_auditor.tariffs import TariffResolver, expected_fee, select_conditions


def test_select_conditions_prefers_latest_effective_grid(make_conditions):
    old = make_conditions(id="GRID-A", effective_date=date(2024, 1, 1))
    new = make_conditions(id="GRID-B", effective_date=date(2024, 6, 1))

    assert select_conditions([old, new], date(2024, 7, 1)).id == "GRID-B"
    assert select_conditions([new, old], date(2024, 3, 1)).id == "GRID-A"
    assert select_conditions([old, new], date(2023, 12, 31)) is None


def test_select_conditions_skips_expired_grid(make_conditions):
    expired = make_conditions(id="GRID-A", effective_date=date(2024, 1, 1), expiration_date=date(2024, 6, 1))

    assert select_conditions([expired], date(2024, 5, 31)).id == "GRID-A"
    assert select_conditions([expired], date(2024, 6, 1)) is None


def test_select_conditions_filters_bank(make_conditions):
    bicec = make_conditions(id="GRID-BICEC")
    sgc = make_conditions(id="GRID-SGC", bank_code="SGC")
    resolver = TariffResolver([bicec, sgc])

    assert resolver.select_conditions(date(2024, 3, 1), "SGC").id == "GRID-SGC"
    assert resolver.select_conditions(date(2024, 3, 1), "UBA") is None


def test_single_bank_history_applies_to_any_code(make_conditions):
    resolver = TariffResolver([make_conditions()])
    assert resolver.select_conditions(date(2024, 3, 1), "OTHER").id == "GRID-2024"


def test_classify_fees(make_transaction):
    resolver = TariffResolver([])
    on = date(2024, 3, 1)

    assert not resolver.classify(make_transaction("REMBOURSEMENT FRAIS", 2500, on)).is_fee
    assert not resolver.classify(make_transaction("PAIEMENT FOURNISSEUR", -150000, on)).is_fee
    assert resolver.classify(make_transaction("AGIOS TRIMESTRE", -12000, on)).code == "OVERDRAFT"
    assert resolver.classify(make_transaction("FRAIS TENUE DE COMPTE", -3000, on)).code == "ACCOUNT_MAINTENANCE"
    assert resolver.classify(make_transaction("COMMISSION RETRAIT DAB", -500, on)).code == "ATM"
    assert resolver.classify(make_transaction("FRAIS DIVERS", -2000, on)).code == "OTHER"

    interest = make_transaction("INTERETS", -8000, on, type=TransactionType.INTEREST)
    assert resolver.classify(interest).code == "OVERDRAFT"


def test_resolve_fee_by_alias_and_fuzzy_name(make_transaction, make_conditions):
    conditions = make_conditions(
        fees=[
            FeeSchedule(code="VIR", name="Commission virement", amount=2500),
            FeeSchedule(code="CHEQUES", name="Chequier", amount=0),
            FeeSchedule(code="X1", name="Frais de dossier credit", amount=25000),
        ]
    )
    resolver = TariffResolver([conditions])
    on = date(2024, 3, 1)

    transfer = resolver.resolve_fee(make_transaction("COMMISSION VIREMENT", -2500, on))
    assert transfer.schedule.code == "VIR"
    assert transfer.conditions.id == "GRID-2024"

    cheque = resolver.resolve_fee(make_transaction("FRAIS CHEQUIER", -3000, on))
    assert cheque.schedule.code == "CHEQUES"

    dossier = resolver.resolve_fee(make_transaction("FRAIS DOSSIER CREDIT", -25000, on))
    assert dossier.schedule.code == "X1"

    assert resolver.resolve_fee(make_transaction("COMMISSION RETRAIT DAB", -500, on)) is None


def test_resolve_rate_overdraft_alias(make_conditions):
    conditions = make_conditions(interest_rates=[InterestRate(type="overdraft", rate=0.15)])
    resolver = TariffResolver([conditions])

    resolved = resolver.resolve_rate(date(2024, 3, 1), "BICEC", "authorized")
    assert resolved.rate.rate == 0.15
    assert resolver.resolve_rate(date(2024, 3, 1), "BICEC", "unauthorized") is None


def test_expected_fee_schedules():
    fixed = FeeSchedule(code="TDC", name="Tenue de compte", amount=3000)
    percentage = FeeSchedule(
        code="VIRI",
        name="Virement international",
        type="percentage",
        percentage=0.01,
        min_amount=500,
        max_amount=5000,
    )
    tiered = FeeSchedule(
        code="RET",
        name="Retrait",
        type="tiered",
        tiers=[FeeTier(up_to=None, amount=2500), FeeTier(up_to=100000, amount=1000)],
    )

    assert expected_fee(fixed) == 3000
    assert expected_fee(percentage, 20000) == 500
    assert expected_fee(percentage, -100000) == pytest.approx(1000)
    assert expected_fee(percentage, 1000000) == 5000
    assert expected_fee(tiered, 50000) == 1000
    assert expected_fee(tiered, 100000) == 1000
    assert expected_fee(tiered, 200000) == 2500


def test_find_related_service_within_window(make_transaction):
    resolver = TariffResolver([])
    fee = make_transaction("COMMISSION RETRAIT DAB", -500, date(2024, 3, 10))
    same_day = make_transaction("RETRAIT DAB AKWA", -50000, date(2024, 3, 10))
    far = make_transaction("RETRAIT DAB BONANJO", -20000, date(2024, 3, 14))
    rule = resolver.classify(fee).rule

    index = resolver.build_service_index([fee, same_day, far])

    assert resolver.find_related_service(fee, rule, index, window_days=1) == same_day
    lonely = make_transaction("COMMISSION RETRAIT DAB", -500, date(2024, 3, 20))
    assert resolver.find_related_service(lonely, rule, index, window_days=1) is None


def test_currency_defaults_without_grid(make_transaction, make_conditions):
    fee = make_transaction("FRAIS DIVERS", -2000, date(2024, 3, 1))
    assert TariffResolver([]).currency_for(fee) == "XAF"
    assert TariffResolver([make_conditions(currency="EUR")]).currency_for(fee) == "EUR"
