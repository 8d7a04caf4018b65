import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, DetectionThresholds, Transaction
from statement_auditor.tariffs import TariffResolver

logger = get_logger(__name__)

T = TypeVar("T")

# Failures limited to one malformed record. Anything else is systemic.
RECORD_ERRORS = (ValueError, TypeError, ArithmeticError, AttributeError, KeyError)


@dataclass(frozen=True)
class DetectionContext:
    transactions: Sequence[Transaction]
    resolver: TariffResolver
    thresholds: DetectionThresholds
    # Prior-period transactions, used for baselines and opening balances only.
    history: Sequence[Transaction] = ()


@dataclass
class DetectorReport:
    anomalies: list[Anomaly] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)


class Detector(ABC):
    anomaly_types: frozenset[AnomalyType] = frozenset()
    label: str = "Detector"
    tag: str = "DETECT"

    @abstractmethod
    def detect(self, context: DetectionContext) -> DetectorReport:
        """Scan the context and report anomalies plus transactions it had to skip."""
        pass

    def _guarded(
        self,
        transaction: Transaction,
        report: DetectorReport,
        step: Callable[..., T],
        *args: object,
    ) -> T | None:
        """Run ``step`` for one record; a malformed record is logged and excluded."""
        try:
            check_record(transaction)
            return step(transaction, *args)
        except RECORD_ERRORS as exc:
            logger.error("[%s] Excluding transaction %s: %s", self.tag, getattr(transaction, "id", "?"), exc)
            report.excluded.append(str(getattr(transaction, "id", "?")))
            return None


def check_record(transaction: Transaction) -> None:
    if not math.isfinite(transaction.amount):
        raise ValueError(f"amount is not finite ({transaction.amount})")
    if not math.isfinite(transaction.balance):
        raise ValueError(f"balance is not finite ({transaction.balance})")
