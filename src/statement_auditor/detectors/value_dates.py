from statement_auditor.detectors.base import DetectionContext, Detector, DetectorReport
from statement_auditor.detectors.interest import DAY_COUNT_DIVISORS
from statement_auditor.domain.dates import business_days_between
from statement_auditor.evidence import build_anomaly, format_amount
from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, Evidence, Transaction

logger = get_logger(__name__)


class ValueDateDetector(Detector):
    """
    Credits value-dated late and debits value-dated early both shift interest
    in the bank's favour. The cost is estimated at the contractual debit rate.
    """

    anomaly_types = frozenset({AnomalyType.VALUE_DATE_ERROR})
    label = "Value dates"
    tag = "VALUE_DATE"

    def detect(self, context: DetectionContext) -> DetectorReport:
        report = DetectorReport()
        for transaction in context.transactions:
            anomaly = self._guarded(transaction, report, self._check, context)
            if anomaly is not None:
                report.anomalies.append(anomaly)
        logger.info("[%s] %d value date error(s)", self.tag, len(report.anomalies))
        return report

    def _check(self, transaction: Transaction, context: DetectionContext) -> Anomaly | None:
        if transaction.value_date is None or transaction.amount == 0:
            return None
        settings = context.thresholds.value_date

        if transaction.amount > 0:
            shift = business_days_between(transaction.date, transaction.value_date)
            allowed = settings.max_credit_value_days
            finding = "Credit value-dated after booking"
        else:
            shift = business_days_between(transaction.value_date, transaction.date)
            allowed = settings.max_debit_backdate_days
            finding = "Debit value-dated before booking"

        excess_days = shift - allowed
        if excess_days <= 0:
            return None

        resolved = context.resolver.resolve_rate(transaction.date, transaction.bank_code, "authorized")
        if resolved is None:
            resolved = context.resolver.resolve_rate(transaction.date, transaction.bank_code, "unauthorized")
        if resolved is None:
            logger.debug("[%s] No rate to value %s, skipping", self.tag, transaction.id)
            return None

        rate = resolved.rate
        impact = abs(transaction.amount) * rate.rate * excess_days / DAY_COUNT_DIVISORS[rate.day_count_convention]
        if round(impact, 2) <= 0:
            return None

        currency = resolved.conditions.currency
        evidence = [
            Evidence(
                kind="VALUE_DATE_SHIFT",
                description=finding,
                value=shift,
                reference=f"booked {transaction.date}, value {transaction.value_date}",
                source=f"{resolved.conditions.bank_name} conditions effective {resolved.conditions.effective_date}",
                condition_ref=f"max {allowed} business day(s)",
                expected_value=float(allowed),
                applied_value=float(shift),
            ),
            Evidence(kind="EXCESS_DAYS", description="Business days beyond the allowed shift", value=excess_days),
            Evidence(
                kind="INTEREST_IMPACT",
                description=f"Cost at {rate.rate:.2%} {rate.day_count_convention}",
                value=round(impact, 2),
            ),
        ]
        recommendation = (
            f"{finding} by {shift} business day(s) on {format_amount(abs(transaction.amount), currency)}; "
            f"claim {format_amount(impact, currency)} of interest impact."
        )
        return build_anomaly(AnomalyType.VALUE_DATE_ERROR, [transaction], impact, 1.0, evidence, recommendation)
