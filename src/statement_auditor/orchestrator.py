import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter

from statement_auditor.core.configuration import validate_analysis_config
from statement_auditor.detectors.base import DetectionContext, Detector, DetectorReport
from statement_auditor.detectors.duplicates import DuplicateFeeDetector
from statement_auditor.detectors.ghost_fees import GhostFeeDetector
from statement_auditor.detectors.interest import InterestVerifier
from statement_auditor.detectors.overcharges import OverchargeDetector
from statement_auditor.detectors.value_dates import ValueDateDetector
from statement_auditor.domain.dates import format_duration
from statement_auditor.errors import AnalysisCancelled, AnalysisFailedError
from statement_auditor.logger import get_logger
from statement_auditor.models import (
    AnalysisConfig,
    AnalysisResult,
    AnalysisStatus,
    Anomaly,
    BankConditions,
    Transaction,
)
from statement_auditor.reviewers.base import AnomalyReviewer
from statement_auditor.statistics import build_summary, compute_statistics
from statement_auditor.tariffs import TariffResolver

logger = get_logger(__name__)

ProgressCallback = Callable[[int, str], None]

CANCELLED_MESSAGE = "Analysis cancelled"
EMPTY_INPUT_MESSAGE = "No transactions to analyse"

_TRANSITIONS = {
    AnalysisStatus.PENDING: {AnalysisStatus.RUNNING},
    AnalysisStatus.RUNNING: {AnalysisStatus.COMPLETED, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.FAILED: set(),
}


def default_detectors() -> list[Detector]:
    return [
        DuplicateFeeDetector(),
        GhostFeeDetector(),
        OverchargeDetector(),
        InterestVerifier(),
        ValueDateDetector(),
    ]


@dataclass
class AnalysisRun:
    id: str
    status: AnalysisStatus = AnalysisStatus.PENDING
    progress: int = 0
    stage: str = "pending"
    error: str | None = None
    result: AnalysisResult | None = None
    warnings: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def transition(self, status: AnalysisStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Run {self.id} cannot go from {self.status.value} to {status.value}")
        self.status = status
        if status == AnalysisStatus.RUNNING:
            self.started_at = datetime.now(timezone.utc)
        else:
            self.completed_at = datetime.now(timezone.utc)

    def fail(self, message: str) -> None:
        self.transition(AnalysisStatus.FAILED)
        self.error = message
        self.stage = "failed"

    def complete(self, result: AnalysisResult) -> None:
        self.transition(AnalysisStatus.COMPLETED)
        self.result = result
        self.stage = "completed"


class DetectionOrchestrator:
    """
    Runs the enabled detectors over one statement and aggregates their findings.

    Detectors only read the immutable inputs, so they can run on a thread
    pool. The merge is always in registration order, then anomaly id, which
    keeps parallel and sequential runs identical.
    """

    def __init__(
        self,
        detectors: Sequence[Detector] | None = None,
        reviewer: AnomalyReviewer | None = None,
        max_workers: int | None = None,
    ):
        self.detectors = list(detectors) if detectors is not None else default_detectors()
        self.reviewer = reviewer
        self.max_workers = max_workers

    def analyze(
        self,
        transactions: Sequence[Transaction],
        conditions: Sequence[BankConditions],
        config: AnalysisConfig | None = None,
        *,
        history: Sequence[Transaction] = (),
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AnalysisResult:
        run = self.run(
            transactions,
            conditions,
            config,
            history=history,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )
        if run.result is None:
            raise AnalysisFailedError(run.id, run.error or "unknown error")
        return run.result

    def run(
        self,
        transactions: Sequence[Transaction],
        conditions: Sequence[BankConditions],
        config: AnalysisConfig | None = None,
        *,
        history: Sequence[Transaction] = (),
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        run_id: str | None = None,
    ) -> AnalysisRun:
        config = config or AnalysisConfig()
        validate_analysis_config(config)

        run = AnalysisRun(id=run_id or uuid.uuid4().hex)
        run.transition(AnalysisStatus.RUNNING)
        started = perf_counter()
        logger.info(
            "[ANALYSIS] Run %s started: %d transaction(s), %d condition grid(s), parallel=%s",
            run.id,
            len(transactions),
            len(conditions),
            config.parallel,
        )

        try:
            result = self._execute(run, transactions, conditions, config, history, on_progress, cancel_event)
        except AnalysisCancelled:
            logger.warning("[ANALYSIS] Run %s cancelled during %s", run.id, run.stage)
            run.fail(CANCELLED_MESSAGE)
        except AnalysisFailedError as exc:
            logger.error("[ANALYSIS] Run %s failed: %s", run.id, exc.message)
            run.fail(exc.message)
        except Exception as exc:
            logger.exception("[ANALYSIS] Run %s failed during %s", run.id, run.stage)
            run.fail(f"{type(exc).__name__}: {exc}")
        else:
            run.complete(result)
            logger.info(
                "[ANALYSIS] Run %s completed in %s: %d anomaly(ies)",
                run.id,
                format_duration(perf_counter() - started),
                len(result.anomalies),
            )
        return run

    def _execute(
        self,
        run: AnalysisRun,
        transactions: Sequence[Transaction],
        conditions: Sequence[BankConditions],
        config: AnalysisConfig,
        history: Sequence[Transaction],
        on_progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> AnalysisResult:
        def check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelled(run.id)

        detectors = [detector for detector in self.detectors if detector.anomaly_types & config.enabled_detectors]
        total_stages = len(detectors) + (1 if self.reviewer is not None else 0) + 1
        completed_stages = 0

        def advance(label: str) -> None:
            nonlocal completed_stages
            completed_stages += 1
            report_progress(completed_stages * 100 // total_stages, label)

        def report_progress(percentage: int, label: str) -> None:
            run.progress = percentage
            run.stage = label
            logger.debug("[ANALYSIS] %s: %d%% (%s)", run.id, percentage, label)
            if on_progress is not None:
                on_progress(percentage, label)

        report_progress(0, "Preparing transactions")
        check_cancelled()

        selected = filter_transactions(transactions, config)
        if not selected:
            raise AnalysisFailedError(run.id, EMPTY_INPUT_MESSAGE)
        logger.info("[ANALYSIS] %d of %d transaction(s) selected", len(selected), len(transactions))

        context = DetectionContext(
            transactions=tuple(selected),
            resolver=TariffResolver(conditions),
            thresholds=config.thresholds,
            history=tuple(history),
        )

        reports = self._run_detectors(detectors, context, config.parallel, advance, check_cancelled)

        anomalies: list[Anomaly] = []
        seen_ids: set[str] = set()
        excluded: dict[str, tuple[str, ...]] = {}
        for detector, report in zip(detectors, reports):
            for anomaly in sorted(report.anomalies, key=lambda item: item.id):
                if anomaly.type not in config.enabled_detectors or anomaly.id in seen_ids:
                    continue
                seen_ids.add(anomaly.id)
                anomalies.append(anomaly)
            if report.excluded:
                excluded[detector.tag] = tuple(dict.fromkeys(report.excluded))
        check_cancelled()

        if self.reviewer is not None:
            anomalies = self._review(selected, anomalies, config.review_timeout_seconds, run.warnings)
            advance("AI review")
            check_cancelled()

        statistics = compute_statistics(selected, anomalies)
        summary = build_summary(anomalies, statistics, context.resolver.currency_for(selected[0]))
        advance("Statistics")

        return AnalysisResult(
            id=run.id,
            status=AnalysisStatus.COMPLETED,
            anomalies=tuple(anomalies),
            statistics=statistics,
            summary=summary,
            config=config,
            started_at=run.started_at,
            completed_at=datetime.now(timezone.utc),
            warnings=tuple(run.warnings),
            excluded_transactions=excluded,
        )

    def _run_detectors(
        self,
        detectors: Sequence[Detector],
        context: DetectionContext,
        parallel: bool,
        advance: Callable[[str], None],
        check_cancelled: Callable[[], None],
    ) -> list[DetectorReport]:
        if not parallel or len(detectors) < 2:
            reports = []
            for detector in detectors:
                check_cancelled()
                reports.append(self._run_detector(detector, context))
                advance(detector.label)
            return reports

        results: dict[int, DetectorReport] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers or len(detectors), thread_name_prefix="detector") as pool:
            futures = {
                pool.submit(self._run_detector, detector, context): index for index, detector in enumerate(detectors)
            }
            try:
                for future in as_completed(futures):
                    index = futures[future]
                    results[index] = future.result()
                    advance(detectors[index].label)
                    check_cancelled()
            except Exception:
                pool.shutdown(wait=False, cancel_futures=True)
                raise
        return [results[index] for index in range(len(detectors))]

    @staticmethod
    def _run_detector(detector: Detector, context: DetectionContext) -> DetectorReport:
        started = perf_counter()
        logger.info("[%s] Running on %d transaction(s)", detector.tag, len(context.transactions))
        report = detector.detect(context)
        logger.info(
            "[%s] Done in %s: %d anomaly(ies), %d excluded",
            detector.tag,
            format_duration(perf_counter() - started),
            len(report.anomalies),
            len(report.excluded),
        )
        return report

    def _review(
        self,
        transactions: Sequence[Transaction],
        anomalies: list[Anomaly],
        timeout: float,
        warnings: list[str],
    ) -> list[Anomaly]:
        if not anomalies:
            return anomalies

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reviewer")
        future = executor.submit(self.reviewer.classify, list(transactions), list(anomalies))
        try:
            annotations = future.result(timeout=timeout)
        except FuturesTimeoutError:
            message = f"AI review timed out after {timeout:g}s"
            logger.warning("[REVIEW] %s", message)
            warnings.append(message)
            return anomalies
        except Exception as exc:
            message = f"AI review failed: {exc}"
            logger.warning("[REVIEW] %s", message)
            warnings.append(message)
            return anomalies
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        reviewed = []
        annotated = 0
        for anomaly in anomalies:
            annotation = annotations.get(anomaly.id)
            if annotation is None:
                reviewed.append(anomaly)
                continue
            annotated += 1
            reviewed.append(anomaly.model_copy(update={"ai_analysis": annotation}))
        logger.info("[REVIEW] %d of %d anomaly(ies) annotated", annotated, len(anomalies))
        return reviewed


def filter_transactions(transactions: Sequence[Transaction], config: AnalysisConfig) -> list[Transaction]:
    """Apply the client, date range and bank code filters of ``config``."""
    bank_codes = set(config.bank_codes)
    selected = []
    for transaction in transactions:
        if config.client_id and transaction.client_id != config.client_id:
            continue
        if config.start_date and transaction.date < config.start_date:
            continue
        if config.end_date and transaction.date > config.end_date:
            continue
        if bank_codes and transaction.bank_code not in bank_codes:
            continue
        selected.append(transaction)
    return selected
