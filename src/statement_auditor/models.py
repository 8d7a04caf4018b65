from datetime import date, datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    FEE = "FEE"
    INTEREST = "INTEREST"
    TRANSFER = "TRANSFER"
    CARD = "CARD"
    ATM = "ATM"
    CHECK = "CHECK"
    OTHER = "OTHER"


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    account_number: str
    bank_code: str
    date: date
    amount: float  # signed, debits are negative
    balance: float
    description: str
    client_id: str | None = None
    value_date: date | None = None
    reference: str | None = None
    category: str | None = None
    type: TransactionType = TransactionType.OTHER


class FeeTier(BaseModel):
    up_to: float | None = None  # None means open-ended
    amount: float


class FeeSchedule(BaseModel):
    code: str
    name: str
    type: Literal["fixed", "percentage", "tiered"] = "fixed"
    amount: float = 0.0
    percentage: float | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    tiers: list[FeeTier] = Field(default_factory=list)


DayCountConvention = Literal["ACT/360", "ACT/365", "30/360"]


class InterestRate(BaseModel):
    type: Literal["authorized", "unauthorized", "overdraft", "savings"]
    rate: float  # annual, decimal
    day_count_convention: DayCountConvention = "ACT/360"


class BankConditions(BaseModel):
    id: str
    bank_code: str
    bank_name: str
    effective_date: date
    expiration_date: date | None = None
    currency: str = "XAF"
    fees: list[FeeSchedule] = Field(default_factory=list)
    interest_rates: list[InterestRate] = Field(default_factory=list)
    authorized_overdraft_limit: float | None = None


class SimilarityWeights(BaseModel):
    amount: float = 0.4
    text: float = 0.4
    time: float = 0.2


class DuplicateThresholds(BaseModel):
    similarity_threshold: float = 0.85
    time_window_days: int = 5
    amount_tolerance: float = 0.01
    half_life_days: float = 7.0


class GhostFeeThresholds(BaseModel):
    entropy_threshold: float = 2.5
    orphan_window_days: int = 1
    min_confidence: float = 0.70
    recurrence_window_months: int = 3
    min_recurrences: int = 2


class OverchargeThresholds(BaseModel):
    tolerance_percentage: float = 0.02
    use_historical_baseline: bool = True
    baseline_statements: int = 6


class InterestThresholds(BaseModel):
    tolerance_amount: float = 1.0
    tolerance_percentage: float = 0.01
    report_undercharges: bool = True


class ValueDateThresholds(BaseModel):
    max_credit_value_days: int = 2
    max_debit_backdate_days: int = 0


class DetectionThresholds(BaseModel):
    similarity: SimilarityWeights = Field(default_factory=SimilarityWeights)
    duplicate: DuplicateThresholds = Field(default_factory=DuplicateThresholds)
    ghost_fee: GhostFeeThresholds = Field(default_factory=GhostFeeThresholds)
    overcharge: OverchargeThresholds = Field(default_factory=OverchargeThresholds)
    interest: InterestThresholds = Field(default_factory=InterestThresholds)
    value_date: ValueDateThresholds = Field(default_factory=ValueDateThresholds)


class AnomalyType(str, Enum):
    DUPLICATE_FEE = "DUPLICATE_FEE"
    GHOST_FEE = "GHOST_FEE"
    OVERCHARGE = "OVERCHARGE"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTEREST_ERROR = "INTEREST_ERROR"
    VALUE_DATE_ERROR = "VALUE_DATE_ERROR"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AnomalyStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"
    CONTESTED = "contested"


class Evidence(BaseModel):
    kind: str
    description: str
    value: str | float | int | bool | None = None
    reference: str | None = None
    source: str | None = None
    condition_ref: str | None = None
    expected_value: float | None = None
    applied_value: float | None = None


class AIAnnotation(BaseModel):
    explanation: str | None = None
    suggested_actions: list[str] = Field(default_factory=list)
    regulatory_reference: str | None = None
    fraud_suspected: bool | None = None


class Anomaly(BaseModel):
    id: str
    type: AnomalyType
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    amount: float = Field(ge=0.0)
    transactions: list[Transaction] = Field(min_length=1)
    evidence: list[Evidence] = Field(min_length=1)
    recommendation: str
    status: AnomalyStatus = AnomalyStatus.PENDING
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    notes: str | None = None
    ai_analysis: AIAnnotation | None = None

    def with_status(
        self,
        status: AnomalyStatus,
        reviewed_by: str | None = None,
        notes: str | None = None,
    ) -> "Anomaly":
        """Return a reviewed copy. Only a pending anomaly can be reviewed."""
        status = AnomalyStatus(status)
        if status == self.status:
            return self
        if self.status != AnomalyStatus.PENDING or status == AnomalyStatus.PENDING:
            raise ValueError(f"Cannot move anomaly {self.id} from {self.status.value} to {status.value}")
        return self.model_copy(
            update={
                "status": status,
                "reviewed_at": datetime.now(timezone.utc),
                "reviewed_by": reviewed_by,
                "notes": notes if notes is not None else self.notes,
            }
        )


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AnalysisConfig(BaseModel):
    thresholds: DetectionThresholds = Field(default_factory=DetectionThresholds)
    enabled_detectors: frozenset[AnomalyType] = frozenset(
        {
            AnomalyType.DUPLICATE_FEE,
            AnomalyType.GHOST_FEE,
            AnomalyType.OVERCHARGE,
            AnomalyType.UNAUTHORIZED,
            AnomalyType.INTEREST_ERROR,
            AnomalyType.VALUE_DATE_ERROR,
        }
    )
    client_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    bank_codes: list[str] = Field(default_factory=list)
    parallel: bool = False
    review_timeout_seconds: float = 30.0


class AnalysisStatistics(BaseModel):
    total_transactions: int
    total_amount: float
    total_anomalies: int
    total_anomaly_amount: float
    anomalies_by_type: dict[AnomalyType, int]
    anomalies_by_severity: dict[Severity, int]
    anomaly_rate: float  # percent of analysed transactions
    potential_savings: float


class AnalysisSummary(BaseModel):
    status: Literal["OK", "WARNING", "CRITICAL"]
    message: str
    key_findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    estimated_recovery: float = 0.0


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: AnalysisStatus
    anomalies: tuple[Anomaly, ...]
    statistics: AnalysisStatistics
    summary: AnalysisSummary
    config: AnalysisConfig
    started_at: datetime
    completed_at: datetime
    warnings: tuple[str, ...] = ()
    excluded_transactions: dict[str, tuple[str, ...]] = Field(default_factory=dict)
