from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, timedelta

from statement_auditor.detectors.base import DetectionContext, Detector, DetectorReport
from statement_auditor.domain.dates import date_range, month_end, month_start, previous_month
from statement_auditor.evidence import build_anomaly, format_amount
from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, Evidence, InterestRate, Transaction
from statement_auditor.tariffs import TariffResolver

logger = get_logger(__name__)

DAY_COUNT_DIVISORS = {"ACT/360": 360, "ACT/365": 365, "30/360": 360}


@dataclass(frozen=True)
class Recomputation:
    start: date
    end: date
    interest: float
    debit_days: float
    debit_balance_days: float
    divisor: int
    rate: InterestRate
    opening_balance: float


def day_weight(day: date, convention: str) -> int:
    """Number of days ``day`` counts for. Only 30/360 deviates from one."""
    if convention != "30/360":
        return 1
    if day.day == 31:
        return 0
    if day.month == 2 and day == month_end(day):
        return 30 - day.day + 1
    return 1


def select_daily_rate(
    resolver: TariffResolver,
    day: date,
    bank_code: str,
    balance: float,
) -> InterestRate | None:
    """
    Authorized rate while the overdraft stays within the authorized limit,
    unauthorized otherwise. Without a configured limit every debit is
    unauthorized. A missing rate of one kind falls back to the other.
    """
    conditions = resolver.select_conditions(day, bank_code)
    if conditions is None:
        return None
    limit = conditions.authorized_overdraft_limit
    within_limit = limit is not None and abs(balance) <= limit
    order = ("authorized", "unauthorized") if within_limit else ("unauthorized", "authorized")
    for rate_type in order:
        resolved = resolver.resolve_rate(day, bank_code, rate_type)
        if resolved is not None:
            return resolved.rate
    return None


class InterestVerifier(Detector):
    """Recomputes overdraft interest (agios) from the daily balance and compares it with the charge."""

    anomaly_types = frozenset({AnomalyType.INTEREST_ERROR})
    label = "Interest verification"
    tag = "INTEREST"

    def detect(self, context: DetectionContext) -> DetectorReport:
        report = DetectorReport()
        charges: list[Transaction] = []
        for transaction in context.transactions:
            rule = self._guarded(transaction, report, self._fee_rule, context)
            if rule is not None and rule.code == "OVERDRAFT":
                charges.append(transaction)

        ledgers = self._ledgers(context, set(report.excluded))
        for charge in sorted(charges, key=lambda t: (t.date, t.id)):
            anomaly = self._guarded(charge, report, self._verify, context, ledgers[charge.account_number])
            if anomaly is not None:
                report.anomalies.append(anomaly)

        logger.info("[%s] %d interest error(s) out of %d charge(s)", self.tag, len(report.anomalies), len(charges))
        return report

    @staticmethod
    def _fee_rule(transaction: Transaction, context: DetectionContext):
        return context.resolver.classify(transaction).rule

    @staticmethod
    def _ledgers(context: DetectionContext, excluded: set[str]) -> dict[str, list[Transaction]]:
        seen: set[str] = set()
        ledgers: dict[str, list[Transaction]] = defaultdict(list)
        for transaction in (*context.history, *context.transactions):
            if transaction.id in seen or transaction.id in excluded:
                continue
            seen.add(transaction.id)
            ledgers[transaction.account_number].append(transaction)
        for rows in ledgers.values():
            rows.sort(key=lambda t: (t.date, t.id))
        return ledgers

    @staticmethod
    def _period(charge: Transaction, ledger: list[Transaction]) -> tuple[date, date] | None:
        """
        The calendar month before the charge when the balance is known by then,
        otherwise the current month up to the day before the charge.
        """
        prior = [t for t in ledger if t.id != charge.id and t.date < charge.date]
        if not prior:
            return None
        start, end = previous_month(charge.date)
        if prior[0].date <= end:
            return start, end
        start = month_start(charge.date)
        end = charge.date - timedelta(days=1)
        if end < start:
            return None
        return start, end

    def recompute(
        self,
        charge: Transaction,
        ledger: list[Transaction],
        resolver: TariffResolver,
    ) -> Recomputation | None:
        period = self._period(charge, ledger)
        if period is None:
            return None
        start, end = period

        movements = [t for t in ledger if start <= t.date <= end and t.id != charge.id]
        before = [t for t in ledger if t.date < start and t.id != charge.id]
        if before:
            opening = before[-1].balance
        elif movements:
            opening = movements[0].balance - movements[0].amount
        else:
            return None

        amounts_by_day: dict[date, float] = defaultdict(float)
        for movement in movements:
            amounts_by_day[movement.date] += movement.amount

        balance = opening
        interest = 0.0
        debit_days = 0.0
        debit_balance_days = 0.0
        used_rates: Counter = Counter()
        for day in date_range(start, end):
            balance += amounts_by_day.get(day, 0.0)
            if balance >= 0:
                continue
            rate = select_daily_rate(resolver, day, charge.bank_code, balance)
            if rate is None:
                logger.debug("[%s] No debit rate on %s for %s", self.tag, day, charge.id)
                return None
            weight = day_weight(day, rate.day_count_convention)
            divisor = DAY_COUNT_DIVISORS[rate.day_count_convention]
            interest += abs(balance) * rate.rate * weight / divisor
            debit_days += weight
            debit_balance_days += abs(balance) * weight
            used_rates[(rate.type, rate.rate, rate.day_count_convention)] += weight

        if not used_rates:
            main_rate = select_daily_rate(resolver, end, charge.bank_code, -1.0)
            if main_rate is None:
                return None
        else:
            (rate_type, rate_value, convention), _ = used_rates.most_common(1)[0]
            main_rate = InterestRate(type=rate_type, rate=rate_value, day_count_convention=convention)

        return Recomputation(
            start=start,
            end=end,
            interest=interest,
            debit_days=debit_days,
            debit_balance_days=debit_balance_days,
            divisor=DAY_COUNT_DIVISORS[main_rate.day_count_convention],
            rate=main_rate,
            opening_balance=opening,
        )

    def _verify(
        self,
        charge: Transaction,
        context: DetectionContext,
        ledger: list[Transaction],
    ) -> Anomaly | None:
        settings = context.thresholds.interest
        result = self.recompute(charge, ledger, context.resolver)
        if result is None:
            logger.debug("[%s] %s cannot be verified (no period, balance or rate)", self.tag, charge.id)
            return None

        actual = abs(charge.amount)
        difference = actual - result.interest
        tolerance = max(settings.tolerance_amount, result.interest * settings.tolerance_percentage)
        if abs(difference) <= tolerance:
            return None
        if difference < 0 and not settings.report_undercharges:
            return None

        direction = "overcharged" if difference > 0 else "undercharged"
        evidence = [
            Evidence(
                kind="INTEREST_RECOMPUTATION",
                description=f"Interest recomputed from daily balances {result.start} to {result.end}",
                value=direction,
                source=f"{result.rate.type} rate {result.rate.rate:.4%} {result.rate.day_count_convention}",
                condition_ref=result.rate.day_count_convention,
                expected_value=round(result.interest, 2),
                applied_value=round(actual, 2),
            ),
            Evidence(kind="SIGNED_DIFFERENCE", description="Charged minus recomputed", value=round(difference, 2)),
            Evidence(kind="DEBIT_DAYS", description="Days in debit during the period", value=result.debit_days),
            Evidence(kind="OPENING_BALANCE", description="Balance at period start", value=round(result.opening_balance, 2)),
            Evidence(kind="TOLERANCE", description="Allowed difference", value=round(tolerance, 2)),
        ]
        if result.debit_balance_days > 0:
            applied_rate = actual * result.divisor / result.debit_balance_days
            evidence.append(
                Evidence(
                    kind="EFFECTIVE_RATE",
                    description="Annual rate implied by the charge",
                    value=round(applied_rate, 6),
                    expected_value=result.rate.rate,
                    applied_value=round(applied_rate, 6),
                )
            )

        currency = context.resolver.currency_for(charge)
        if difference > 0:
            recommendation = (
                f"Contest the interest charge of {format_amount(actual, currency)}: recomputation gives "
                f"{format_amount(result.interest, currency)}, {format_amount(difference, currency)} too much."
            )
        else:
            recommendation = (
                f"Interest charged ({format_amount(actual, currency)}) is {format_amount(-difference, currency)} "
                f"below the recomputed {format_amount(result.interest, currency)}; check for a later regularisation."
            )
        return build_anomaly(AnomalyType.INTEREST_ERROR, [charge], abs(difference), 1.0, evidence, recommendation)
