import bisect
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from statement_auditor.analysis.entropy import (
    description_suspicion,
    is_round_amount,
    round_amount_score,
    shannon_entropy,
)
from statement_auditor.detectors.base import DetectionContext, Detector, DetectorReport
from statement_auditor.domain.dates import add_months, is_month_end
from statement_auditor.domain.patterns import FeeRule
from statement_auditor.evidence import build_anomaly, format_amount
from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, Evidence, Transaction
from statement_auditor.tariffs import ServiceIndex

logger = get_logger(__name__)

# Weight of each suspicion criterion. The sum may exceed 1; confidence is capped.
DESCRIPTION_WEIGHT = 0.4
DESCRIPTION_MIN_SCORE = 0.3
NO_SERVICE_WEIGHT = 0.3
ROUND_AMOUNT_WEIGHT = 0.1
LOW_ENTROPY_WEIGHT = 0.15
RECURRING_WEIGHT = 0.15
MISSING_REFERENCE_WEIGHT = 0.1
MONTH_END_WEIGHT = 0.05


@dataclass(frozen=True)
class _Criterion:
    kind: str
    reason: str
    contribution: float


class GhostFeeDetector(Detector):
    """
    Flags fees with no identifiable service behind them.

    Periodic charges (maintenance, agios, alerts, statements) are never
    ghost candidates. A description whose entropy reaches the threshold is
    considered specific enough to be legitimate, whatever its other traits.
    """

    anomaly_types = frozenset({AnomalyType.GHOST_FEE})
    label = "Ghost fees"
    tag = "GHOST"

    def detect(self, context: DetectionContext) -> DetectorReport:
        report = DetectorReport()
        candidates: list[tuple[Transaction, FeeRule]] = []
        occurrences: dict[tuple[str, str], list[date]] = defaultdict(list)

        for transaction in context.transactions:
            rule = self._guarded(transaction, report, self._fee_rule, context)
            if rule is None:
                continue
            occurrences[(transaction.account_number, rule.code)].append(transaction.date)
            if not rule.periodic:
                candidates.append((transaction, rule))

        for dates in occurrences.values():
            dates.sort()

        index = context.resolver.build_service_index(context.transactions)
        for fee, rule in candidates:
            anomaly = self._guarded(fee, report, self._analyze, rule, context, index, occurrences)
            if anomaly is not None:
                report.anomalies.append(anomaly)

        logger.info("[%s] %d ghost fee(s) out of %d candidate(s)", self.tag, len(report.anomalies), len(candidates))
        return report

    @staticmethod
    def _fee_rule(transaction: Transaction, context: DetectionContext) -> FeeRule | None:
        return context.resolver.classify(transaction).rule

    def _analyze(
        self,
        fee: Transaction,
        rule: FeeRule,
        context: DetectionContext,
        index: ServiceIndex,
        occurrences: dict[tuple[str, str], list[date]],
    ) -> Anomaly | None:
        settings = context.thresholds.ghost_fee

        entropy = shannon_entropy(fee.description)
        if entropy >= settings.entropy_threshold:
            return None

        if context.resolver.find_related_service(fee, rule, index, settings.orphan_window_days) is not None:
            return None

        dates = occurrences[(fee.account_number, rule.code)]
        low = bisect.bisect_left(dates, add_months(fee.date, -settings.recurrence_window_months))
        high = bisect.bisect_right(dates, add_months(fee.date, settings.recurrence_window_months))
        recurrences = high - low
        recurring = recurrences >= settings.min_recurrences

        criteria = self._criteria(fee, entropy, recurring)
        confidence = min(1.0, sum(criterion.contribution for criterion in criteria))
        if confidence < settings.min_confidence or not recurring:
            logger.debug(
                "[%s] %s not reported (confidence %.2f, %d occurrence(s))",
                self.tag,
                fee.id,
                confidence,
                recurrences,
            )
            return None

        evidence = [
            Evidence(kind="SUSPICION_SCORE", description="Weighted suspicion score", value=round(confidence, 4)),
            Evidence(
                kind="NO_SERVICE",
                description=f"No matching operation within {settings.orphan_window_days} day(s)",
                value=rule.label,
            ),
            Evidence(kind="ENTROPY", description="Description entropy (bits)", value=round(entropy, 4)),
            Evidence(
                kind="RECURRING",
                description=f"Occurrences of {rule.code} within {settings.recurrence_window_months} month(s)",
                value=recurrences,
            ),
            self._grid_evidence(fee, rule, context),
            Evidence(
                kind="ROUNDNESS",
                description="Round-number score of the amount",
                value=round(round_amount_score(fee.amount), 4),
            ),
            Evidence(kind="DESCRIPTION", description="Bank label", value=fee.description),
        ]
        evidence.extend(
            Evidence(kind="CRITERION", description=criterion.reason, value=round(criterion.contribution, 4))
            for criterion in criteria
        )

        currency = context.resolver.currency_for(fee)
        recommendation = (
            f"Ask the bank to justify the charge '{fee.description}' of "
            f"{format_amount(abs(fee.amount), currency)} on {fee.date}; no related operation was found."
        )
        return build_anomaly(AnomalyType.GHOST_FEE, [fee], abs(fee.amount), confidence, evidence, recommendation)

    @staticmethod
    def _criteria(fee: Transaction, entropy: float, recurring: bool) -> list[_Criterion]:
        criteria = [
            _Criterion("NO_SERVICE", "No associated service found", NO_SERVICE_WEIGHT),
            _Criterion("LOW_ENTROPY", f"Description too simple ({entropy:.2f} bits)", LOW_ENTROPY_WEIGHT),
        ]
        suspicion = description_suspicion(fee.description)
        if suspicion > DESCRIPTION_MIN_SCORE:
            criteria.append(_Criterion("VAGUE_DESCRIPTION", "Vague or generic description", suspicion * DESCRIPTION_WEIGHT))
        if is_round_amount(fee.amount):
            criteria.append(_Criterion("ROUND_AMOUNT", "Suspiciously round amount", ROUND_AMOUNT_WEIGHT))
        if recurring:
            criteria.append(_Criterion("RECURRING", "Recurring charge without identifiable service", RECURRING_WEIGHT))
        if not (fee.reference or "").strip():
            criteria.append(_Criterion("MISSING_REFERENCE", "No operation reference", MISSING_REFERENCE_WEIGHT))
        if is_month_end(fee.date):
            criteria.append(_Criterion("MONTH_END", "Charged at month end", MONTH_END_WEIGHT))
        return criteria

    @staticmethod
    def _grid_evidence(fee: Transaction, rule: FeeRule, context: DetectionContext) -> Evidence:
        conditions = context.resolver.select_conditions(fee.date, fee.bank_code)
        if conditions is None:
            return Evidence(kind="GRID_CHECK", description="Tariff check", value="No tariff grid in force")
        resolved = context.resolver.resolve_fee(fee, rule)
        source = f"{conditions.bank_name} tariff grid effective {conditions.effective_date}"
        if resolved is None:
            return Evidence(
                kind="GRID_CHECK",
                description="Tariff check",
                value="No matching entry in the tariff grid",
                source=source,
                condition_ref=conditions.id,
            )
        return Evidence(
            kind="GRID_CHECK",
            description="Tariff check",
            value=resolved.schedule.name,
            source=source,
            condition_ref=resolved.schedule.code,
        )
