from abc import ABC, abstractmethod
from collections.abc import Sequence

from statement_auditor.models import AIAnnotation, Anomaly, Transaction


class AnomalyReviewer(ABC):
    @abstractmethod
    def classify(
        self, transactions: Sequence[Transaction], anomalies: Sequence[Anomaly]
    ) -> dict[str, AIAnnotation]:
        """Annotate detected anomalies, keyed by anomaly id. Must not invent anomalies."""
        pass
