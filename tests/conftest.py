import itertools
from collections.abc import Callable, Sequence
from datetime import date

import pytest

from statement_auditor.detectors.base import DetectionContext
from statement_auditor.models import (
    BankConditions,
    DetectionThresholds,
    FeeSchedule,
    InterestRate,
    Transaction,
)
from statement_auditor.tariffs import TariffResolver


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    counter = itertools.count(1)

    def factory(description: str, amount: float, on: date, **fields: object) -> Transaction:
        values: dict[str, object] = {
            "id": f"T{next(counter):04d}",
            "account_number": "CM-001",
            "bank_code": "BICEC",
            "balance": 0.0,
        }
        values.update(fields)
        return Transaction(date=on, amount=amount, description=description, **values)

    return factory


@pytest.fixture
def make_conditions() -> Callable[..., BankConditions]:
    def factory(
        fees: Sequence[FeeSchedule] = (),
        interest_rates: Sequence[InterestRate] = (),
        **fields: object,
    ) -> BankConditions:
        values: dict[str, object] = {
            "id": "GRID-2024",
            "bank_code": "BICEC",
            "bank_name": "BICEC",
            "effective_date": date(2024, 1, 1),
        }
        values.update(fields)
        return BankConditions(fees=list(fees), interest_rates=list(interest_rates), **values)

    return factory


@pytest.fixture
def make_context() -> Callable[..., DetectionContext]:
    def factory(
        transactions: Sequence[Transaction],
        conditions: Sequence[BankConditions] = (),
        history: Sequence[Transaction] = (),
        thresholds: DetectionThresholds | None = None,
    ) -> DetectionContext:
        return DetectionContext(
            transactions=tuple(transactions),
            resolver=TariffResolver(conditions),
            thresholds=thresholds or DetectionThresholds(),
            history=tuple(history),
        )

    return factory
