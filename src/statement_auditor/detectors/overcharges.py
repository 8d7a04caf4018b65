from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from statement_auditor.detectors.base import RECORD_ERRORS, DetectionContext, Detector, DetectorReport, check_record
from statement_auditor.domain.dates import month_key
from statement_auditor.domain.patterns import FeeRule
from statement_auditor.evidence import build_anomaly, format_amount
from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, Evidence, Transaction
from statement_auditor.tariffs import ServiceIndex, expected_fee

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Expectation:
    amount: float
    source: str
    condition_ref: str
    confidence: float
    base: Transaction | None = None
    contractually_free: bool = False


class OverchargeDetector(Detector):
    anomaly_types = frozenset({AnomalyType.OVERCHARGE, AnomalyType.UNAUTHORIZED})
    label = "Overcharges"
    tag = "OVERCHARGE"

    def detect(self, context: DetectionContext) -> DetectorReport:
        report = DetectorReport()
        fees: list[tuple[Transaction, FeeRule]] = []
        for transaction in context.transactions:
            rule = self._guarded(transaction, report, self._fee_rule, context)
            # Agios are checked by recomputation in the interest verifier.
            if rule is not None and rule.code != "OVERDRAFT":
                fees.append((transaction, rule))

        pool = self._charge_history(context, fees)
        index = context.resolver.build_service_index(context.transactions)
        for fee, rule in fees:
            anomaly = self._guarded(fee, report, self._analyze, rule, context, index, pool)
            if anomaly is not None:
                report.anomalies.append(anomaly)

        logger.info("[%s] %d overcharge(s) out of %d fee(s)", self.tag, len(report.anomalies), len(fees))
        return report

    @staticmethod
    def _fee_rule(transaction: Transaction, context: DetectionContext) -> FeeRule | None:
        return context.resolver.classify(transaction).rule

    @staticmethod
    def _charge_history(
        context: DetectionContext,
        fees: Iterable[tuple[Transaction, FeeRule]],
    ) -> dict[tuple[str, str], list[tuple[date, float]]]:
        pool: dict[tuple[str, str], list[tuple[date, float]]] = defaultdict(list)
        for fee, rule in fees:
            pool[(fee.account_number, rule.code)].append((fee.date, abs(fee.amount)))
        for past in context.history:
            try:
                check_record(past)
                rule = context.resolver.classify(past).rule
            except RECORD_ERRORS as exc:
                logger.warning("[OVERCHARGE] Ignoring history record %s: %s", past.id, exc)
                continue
            if rule is not None:
                pool[(past.account_number, rule.code)].append((past.date, abs(past.amount)))
        return pool

    def _analyze(
        self,
        fee: Transaction,
        rule: FeeRule,
        context: DetectionContext,
        index: ServiceIndex,
        pool: dict[tuple[str, str], list[tuple[date, float]]],
    ) -> Anomaly | None:
        settings = context.thresholds.overcharge
        applied = abs(fee.amount)

        expectation = self._contract_expectation(fee, rule, context, index)
        if expectation is None and settings.use_historical_baseline:
            expectation = self._baseline_expectation(fee, rule, pool, settings.baseline_statements)
        if expectation is None:
            logger.debug("[%s] No tariff or baseline for %s (%s)", self.tag, fee.id, rule.code)
            return None

        expected = expectation.amount
        if applied <= expected * (1 + settings.tolerance_percentage):
            return None

        excess = applied - expected
        currency = context.resolver.currency_for(fee)
        evidence = [
            Evidence(
                kind="TARIFF_COMPARISON",
                description="Applied charge against the expected amount",
                value=f"+{excess / expected * 100:.1f}%" if expected > 0 else "not chargeable",
                source=expectation.source,
                condition_ref=expectation.condition_ref,
                expected_value=round(expected, 2),
                applied_value=round(applied, 2),
            ),
            Evidence(kind="EXCESS", description="Amount charged above the expected fee", value=round(excess, 2)),
            Evidence(kind="DESCRIPTION", description="Bank label", value=fee.description),
        ]
        if expectation.base is not None:
            evidence.append(
                Evidence(
                    kind="BASE_OPERATION",
                    description="Operation the fee was computed on",
                    value=abs(expectation.base.amount),
                    reference=expectation.base.id,
                )
            )

        if expectation.contractually_free:
            recommendation = (
                f"'{fee.description}' is free under {expectation.condition_ref}; claim the full "
                f"{format_amount(excess, currency)} back."
            )
            return build_anomaly(AnomalyType.UNAUTHORIZED, [fee], excess, 1.0, evidence, recommendation)

        recommendation = (
            f"Claim {format_amount(excess, currency)} charged above the expected "
            f"{format_amount(expected, currency)} for '{fee.description}' ({expectation.source})."
        )
        return build_anomaly(AnomalyType.OVERCHARGE, [fee], excess, expectation.confidence, evidence, recommendation)

    @staticmethod
    def _contract_expectation(
        fee: Transaction,
        rule: FeeRule,
        context: DetectionContext,
        index: ServiceIndex,
    ) -> _Expectation | None:
        resolved = context.resolver.resolve_fee(fee, rule)
        if resolved is None:
            return None
        schedule = resolved.schedule

        base: Transaction | None = None
        if schedule.type != "fixed":
            base = context.resolver.find_related_service(
                fee, rule, index, context.thresholds.ghost_fee.orphan_window_days
            )
        if schedule.type != "fixed" and base is None and not (schedule.amount or schedule.min_amount):
            # A proportional fee with no known base and no floor has no expected amount.
            logger.debug("[OVERCHARGE] No base operation for %s under %s", fee.id, schedule.code)
            return None
        expected = expected_fee(schedule, abs(base.amount) if base else None)

        conditions = resolved.conditions
        return _Expectation(
            amount=expected,
            source=f"{conditions.bank_name} tariff grid effective {conditions.effective_date}",
            condition_ref=f"{schedule.code} - {schedule.name}",
            confidence=1.0,
            base=base,
            contractually_free=schedule.type == "fixed" and expected == 0,
        )

    @staticmethod
    def _baseline_expectation(
        fee: Transaction,
        rule: FeeRule,
        pool: dict[tuple[str, str], list[tuple[date, float]]],
        statements: int,
    ) -> _Expectation | None:
        """Mean of the monthly averages of the same fee over the prior statements."""
        current = month_key(fee.date)
        by_month: dict[tuple[int, int], list[float]] = defaultdict(list)
        for charged_on, amount in pool.get((fee.account_number, rule.code), ()):
            key = month_key(charged_on)
            if key < current:
                by_month[key].append(amount)
        if not by_month:
            return None

        months = sorted(by_month, reverse=True)[:statements]
        averages = [sum(by_month[key]) / len(by_month[key]) for key in months]
        return _Expectation(
            amount=sum(averages) / len(averages),
            source=f"Historical average over {len(months)} statement(s)",
            condition_ref=f"{rule.code} baseline",
            confidence=min(1.0, len(months) / statements),
        )
