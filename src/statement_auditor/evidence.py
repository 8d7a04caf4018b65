import hashlib
from collections.abc import Sequence

from statement_auditor.models import Anomaly, AnomalyType, Evidence, Severity, Transaction

# Checked from the top; boundaries are exclusive (exactly 5,000 is LOW).
SEVERITY_THRESHOLDS: tuple[tuple[float, Severity], ...] = (
    (50_000, Severity.CRITICAL),
    (20_000, Severity.HIGH),
    (5_000, Severity.MEDIUM),
)

COMPLIANCE_TYPES = frozenset({AnomalyType.UNAUTHORIZED})

ID_PREFIXES = {
    AnomalyType.DUPLICATE_FEE: "DUP",
    AnomalyType.GHOST_FEE: "GHOST",
    AnomalyType.OVERCHARGE: "OVR",
    AnomalyType.UNAUTHORIZED: "UNAUTH",
    AnomalyType.INTEREST_ERROR: "INT",
    AnomalyType.VALUE_DATE_ERROR: "VDATE",
}


def classify_severity(amount: float, is_compliance_or_fraud: bool = False) -> Severity:
    if is_compliance_or_fraud:
        return Severity.CRITICAL
    for threshold, severity in SEVERITY_THRESHOLDS:
        if amount > threshold:
            return severity
    return Severity.LOW


def anomaly_id(anomaly_type: AnomalyType, transactions: Sequence[Transaction]) -> str:
    """Stable id derived from the type and the transactions involved."""
    first = min(transactions, key=lambda transaction: (transaction.date, transaction.id))
    key = "|".join([anomaly_type.value, *sorted(transaction.id for transaction in transactions)])
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{ID_PREFIXES[anomaly_type]}-{first.date:%Y%m%d}-{digest}"


def format_amount(amount: float, currency: str = "XAF") -> str:
    return f"{amount:,.0f} {currency}".replace(",", " ")


def build_anomaly(
    anomaly_type: AnomalyType,
    transactions: Sequence[Transaction],
    amount: float,
    confidence: float,
    evidence: Sequence[Evidence],
    recommendation: str,
    *,
    compliance_breach: bool = False,
) -> Anomaly:
    """
    Finalize a detector finding into an Anomaly.

    Amounts are rounded to the cent before severity is assigned. Nothing is
    clamped: a finding without evidence, a negative amount or a confidence
    outside [0, 1] is a detector bug and raises ValueError.
    """
    if not transactions:
        raise ValueError(f"{anomaly_type.value} finding has no transactions")
    if not evidence:
        raise ValueError(f"{anomaly_type.value} finding has no evidence")
    if amount < 0:
        raise ValueError(f"{anomaly_type.value} amount must not be negative, got {amount}")
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"{anomaly_type.value} confidence must be in [0, 1], got {confidence}")

    amount = round(amount, 2)
    ordered = sorted(transactions, key=lambda transaction: (transaction.date, transaction.id))
    return Anomaly(
        id=anomaly_id(anomaly_type, ordered),
        type=anomaly_type,
        severity=classify_severity(amount, compliance_breach or anomaly_type in COMPLIANCE_TYPES),
        confidence=round(confidence, 4),
        amount=amount,
        transactions=ordered,
        evidence=list(evidence),
        recommendation=recommendation,
    )
