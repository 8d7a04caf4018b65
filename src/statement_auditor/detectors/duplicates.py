from collections import defaultdict

from statement_auditor.analysis.similarity import amount_similarity, composite_transaction_score
from statement_auditor.detectors.base import DetectionContext, Detector, DetectorReport
from statement_auditor.evidence import build_anomaly, format_amount
from statement_auditor.logger import get_logger
from statement_auditor.models import Anomaly, AnomalyType, Evidence, Transaction

logger = get_logger(__name__)


class _UnionFind:
    def __init__(self) -> None:
        self.parent: dict[str, str] = {}

    def find(self, key: str) -> str:
        self.parent.setdefault(key, key)
        root = key
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[key] != root:
            self.parent[key], key = root, self.parent[key]
        return root

    def union(self, first: str, second: str) -> None:
        root_a, root_b = self.find(first), self.find(second)
        if root_a != root_b:
            # Smallest id becomes the root so grouping does not depend on scan order.
            low, high = sorted((root_a, root_b))
            self.parent[high] = low


class DuplicateFeeDetector(Detector):
    """
    Finds fees charged more than once for the same service.

    Fees are compared pairwise per account inside a sliding date window;
    qualifying pairs are merged into groups so that each charge belongs to at
    most one duplicate group. The earliest charge of a group is the legitimate
    one, every other member is reclaimable.
    """

    anomaly_types = frozenset({AnomalyType.DUPLICATE_FEE})
    label = "Duplicate fees"
    tag = "DUPLICATE"

    def detect(self, context: DetectionContext) -> DetectorReport:
        report = DetectorReport()
        fees_by_account: dict[str, list[Transaction]] = defaultdict(list)
        for transaction in context.transactions:
            if self._guarded(transaction, report, self._is_fee, context):
                fees_by_account[transaction.account_number].append(transaction)

        for account in sorted(fees_by_account):
            fees = sorted(fees_by_account[account], key=lambda t: (t.date, t.id))
            report.anomalies.extend(self._scan_account(fees, context))

        logger.info(
            "[%s] %d duplicate group(s) across %d account(s)",
            self.tag,
            len(report.anomalies),
            len(fees_by_account),
        )
        return report

    @staticmethod
    def _is_fee(transaction: Transaction, context: DetectionContext) -> bool:
        return context.resolver.classify(transaction).is_fee

    def _scan_account(self, fees: list[Transaction], context: DetectionContext) -> list[Anomaly]:
        settings = context.thresholds.duplicate
        weights = context.thresholds.similarity
        min_amount_similarity = 1.0 - settings.amount_tolerance

        groups = _UnionFind()
        pair_scores: dict[tuple[str, str], float] = {}
        by_id = {fee.id: fee for fee in fees}

        for index, first in enumerate(fees):
            for second in fees[index + 1:]:
                if (second.date - first.date).days > settings.time_window_days:
                    break
                if amount_similarity(first.amount, second.amount, settings.amount_tolerance) < min_amount_similarity:
                    continue
                score = composite_transaction_score(
                    first,
                    second,
                    weights,
                    amount_tolerance=settings.amount_tolerance,
                    half_life_days=settings.half_life_days,
                )
                if score >= settings.similarity_threshold:
                    groups.union(first.id, second.id)
                    pair_scores[tuple(sorted((first.id, second.id)))] = score

        members: dict[str, set[str]] = defaultdict(set)
        for pair in pair_scores:
            members[groups.find(pair[0])].update(pair)

        anomalies = []
        for root in sorted(members):
            group = sorted((by_id[member_id] for member_id in members[root]), key=lambda t: (t.date, t.id))
            scores = {pair: score for pair, score in pair_scores.items() if groups.find(pair[0]) == root}
            anomalies.append(self._build(group, scores, by_id, context))
        return anomalies

    def _build(
        self,
        group: list[Transaction],
        scores: dict[tuple[str, str], float],
        by_id: dict[str, Transaction],
        context: DetectionContext,
    ) -> Anomaly:
        kept, duplicates = group[0], group[1:]
        amount = sum(abs(transaction.amount) for transaction in duplicates)
        currency = context.resolver.currency_for(kept)

        evidence = [
            Evidence(
                kind="DUPLICATE_GROUP",
                description=f"{len(group)} similar charges between {group[0].date} and {group[-1].date}",
                value=len(group),
                reference=kept.id,
            )
        ]
        for (first_id, second_id), score in sorted(scores.items()):
            gap = abs((by_id[second_id].date - by_id[first_id].date).days)
            evidence.append(
                Evidence(
                    kind="PAIR_SIMILARITY",
                    description=f"Similarity between {first_id} and {second_id}",
                    value=round(score, 4),
                    reference=f"{first_id}|{second_id}",
                )
            )
            evidence.append(
                Evidence(
                    kind="TIME_GAP",
                    description=f"Days between {first_id} and {second_id}",
                    value=gap,
                    reference=f"{first_id}|{second_id}",
                )
            )
        if len({abs(transaction.amount) for transaction in group}) == 1:
            evidence.append(
                Evidence(kind="EXACT_AMOUNT", description="All charges have the same amount", value=abs(kept.amount))
            )
        evidence.append(Evidence(kind="DESCRIPTION", description="Bank label", value=kept.description))

        confidence = min(1.0, sum(scores.values()) / len(scores))
        recommendation = (
            f"Request a refund of {format_amount(amount, currency)} for {len(duplicates)} duplicate "
            f"charge(s) of '{kept.description}'; the charge of {kept.date} is kept as legitimate."
        )
        return build_anomaly(AnomalyType.DUPLICATE_FEE, group, amount, confidence, evidence, recommendation)
