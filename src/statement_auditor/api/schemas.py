from pydantic import BaseModel, Field

from statement_auditor.models import AnalysisConfig, BankConditions, Transaction


class AnalyzeRequest(BaseModel):
    transactions: list[Transaction]
    conditions: list[BankConditions] = Field(default_factory=list)
    # Prior statements, used for baselines and opening balances.
    history: list[Transaction] = Field(default_factory=list)
    config: AnalysisConfig | None = None
