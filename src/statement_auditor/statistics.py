import math
from collections.abc import Sequence

from statement_auditor.evidence import format_amount
from statement_auditor.models import (
    AnalysisStatistics,
    AnalysisSummary,
    Anomaly,
    AnomalyType,
    Severity,
    Transaction,
)

MAX_KEY_FINDINGS = 5
MAX_RECOMMENDATIONS = 5
# More anomalies than this turns an otherwise clean run into a warning.
WARNING_ANOMALY_COUNT = 10

TYPE_LABELS = {
    AnomalyType.DUPLICATE_FEE: "duplicate fee(s)",
    AnomalyType.GHOST_FEE: "ghost fee(s)",
    AnomalyType.OVERCHARGE: "overcharge(s)",
    AnomalyType.UNAUTHORIZED: "unauthorized fee(s)",
    AnomalyType.INTEREST_ERROR: "interest error(s)",
    AnomalyType.VALUE_DATE_ERROR: "value date error(s)",
}

RECOMMENDATIONS = {
    AnomalyType.DUPLICATE_FEE: "Set up a monthly review of duplicated fees.",
    AnomalyType.GHOST_FEE: "Request detailed invoices for every unidentified fee.",
    AnomalyType.OVERCHARGE: "Renegotiate the fee conditions with the bank.",
    AnomalyType.UNAUTHORIZED: "Claim a refund of fees the contract does not allow.",
    AnomalyType.INTEREST_ERROR: "Request the detailed interest computation from the bank.",
    AnomalyType.VALUE_DATE_ERROR: "Check value dates and claim the interest charged because of them.",
}


def is_interest_undercharge(anomaly: Anomaly) -> bool:
    """An interest anomaly where the bank charged less than it could have."""
    if anomaly.type != AnomalyType.INTEREST_ERROR:
        return False
    for item in anomaly.evidence:
        if item.kind == "SIGNED_DIFFERENCE" and isinstance(item.value, (int, float)):
            return item.value < 0
    return False


def compute_statistics(transactions: Sequence[Transaction], anomalies: Sequence[Anomaly]) -> AnalysisStatistics:
    by_type = {anomaly_type: 0 for anomaly_type in AnomalyType}
    by_severity = {severity: 0 for severity in Severity}
    for anomaly in anomalies:
        by_type[anomaly.type] += 1
        by_severity[anomaly.severity] += 1

    total_transactions = len(transactions)
    total_anomaly_amount = sum(anomaly.amount for anomaly in anomalies)
    # Undercharged interest is reported for transparency but recovers nothing.
    potential_savings = sum(anomaly.amount for anomaly in anomalies if not is_interest_undercharge(anomaly))
    anomaly_rate = len(anomalies) / total_transactions * 100 if total_transactions else 0.0

    return AnalysisStatistics(
        total_transactions=total_transactions,
        total_amount=round(sum(abs(t.amount) for t in transactions if math.isfinite(t.amount)), 2),
        total_anomalies=len(anomalies),
        total_anomaly_amount=round(total_anomaly_amount, 2),
        anomalies_by_type=by_type,
        anomalies_by_severity=by_severity,
        anomaly_rate=round(anomaly_rate, 2),
        potential_savings=round(potential_savings, 2),
    )


def build_summary(
    anomalies: Sequence[Anomaly],
    statistics: AnalysisStatistics,
    currency: str = "XAF",
) -> AnalysisSummary:
    critical = statistics.anomalies_by_severity.get(Severity.CRITICAL, 0)
    high = statistics.anomalies_by_severity.get(Severity.HIGH, 0)

    if critical > 0:
        status = "CRITICAL"
    elif high > 0 or statistics.total_anomalies > WARNING_ANOMALY_COUNT:
        status = "WARNING"
    else:
        status = "OK"

    if statistics.total_anomalies == 0:
        message = "No anomaly detected. Bank charges look consistent with the conditions."
    else:
        message = (
            f"{statistics.total_anomalies} anomaly(ies) detected for a total of "
            f"{format_amount(statistics.total_anomaly_amount, currency)}. "
            f"Anomaly rate: {statistics.anomaly_rate:.1f}%."
        )

    return AnalysisSummary(
        status=status,
        message=message,
        key_findings=_key_findings(anomalies, statistics, currency),
        recommendations=[
            RECOMMENDATIONS[anomaly_type]
            for anomaly_type in AnomalyType
            if statistics.anomalies_by_type.get(anomaly_type, 0) > 0
        ][:MAX_RECOMMENDATIONS],
        estimated_recovery=statistics.potential_savings,
    )


def _key_findings(anomalies: Sequence[Anomaly], statistics: AnalysisStatistics, currency: str) -> list[str]:
    findings: list[str] = []
    critical = statistics.anomalies_by_severity.get(Severity.CRITICAL, 0)
    if critical > 0:
        findings.append(f"{critical} critical anomaly(ies) requiring immediate attention")

    for anomaly_type in AnomalyType:
        count = statistics.anomalies_by_type.get(anomaly_type, 0)
        if count == 0:
            continue
        amount = sum(anomaly.amount for anomaly in anomalies if anomaly.type == anomaly_type)
        findings.append(f"{count} {TYPE_LABELS[anomaly_type]} ({format_amount(amount, currency)})")

    return findings[:MAX_KEY_FINDINGS]
