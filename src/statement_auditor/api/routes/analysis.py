import asyncio
import json
import threading
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from statement_auditor.api.dependencies import get_orchestrator
from statement_auditor.api.schemas import AnalyzeRequest
from statement_auditor.core import configuration, settings
from statement_auditor.errors import AnalysisFailedError, ConfigurationError
from statement_auditor.logger import get_logger
from statement_auditor.models import AnalysisConfig, AnalysisResult
from statement_auditor.orchestrator import AnalysisRun, DetectionOrchestrator

logger = get_logger(__name__)

router = APIRouter()


def _configuration_error(exc: ConfigurationError) -> HTTPException:
    return HTTPException(status_code=400, detail={"message": str(exc), "errors": exc.errors})


def _resolve_config(payload: AnalyzeRequest) -> AnalysisConfig:
    try:
        config = payload.config or configuration.build_analysis_config()
        configuration.validate_analysis_config(config)
    except ConfigurationError as exc:
        logger.warning("[API] Rejected analysis request: %s", exc)
        raise _configuration_error(exc) from exc
    return config


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/api/thresholds")
async def get_thresholds() -> dict[str, object]:
    try:
        return configuration.build_threshold_context()
    except ConfigurationError as exc:
        raise _configuration_error(exc) from exc


@router.post("/api/analyze")
async def analyze(
    payload: AnalyzeRequest,
    orchestrator: Annotated[DetectionOrchestrator, Depends(get_orchestrator)],
) -> AnalysisResult:
    config = _resolve_config(payload)
    try:
        return await asyncio.to_thread(
            orchestrator.analyze,
            payload.transactions,
            payload.conditions,
            config,
            history=payload.history,
        )
    except AnalysisFailedError as exc:
        raise HTTPException(status_code=422, detail={"run_id": exc.run_id, "message": exc.message}) from exc


@router.post("/api/analyze-stream")
async def analyze_stream(
    payload: AnalyzeRequest,
    orchestrator: Annotated[DetectionOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse:
    config = _resolve_config(payload)

    async def generate() -> Any:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        cancel_event = threading.Event()

        def on_progress(percentage: int, label: str) -> None:
            event = {"stage": "progress", "percent": percentage, "label": label}
            loop.call_soon_threadsafe(queue.put_nowait, event)

        task = asyncio.create_task(
            asyncio.to_thread(
                orchestrator.run,
                payload.transactions,
                payload.conditions,
                config,
                history=payload.history,
                on_progress=on_progress,
                cancel_event=cancel_event,
            )
        )
        task.add_done_callback(lambda _: queue.put_nowait(None))

        try:
            yield f"data: {json.dumps({'stage': 'start', 'transactions': len(payload.transactions)})}\n\n"
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield f"data: {json.dumps(event)}\n\n"

            run: AnalysisRun = task.result()
            if run.result is not None:
                yield f"event: result\ndata: {run.result.model_dump_json()}\n\n"
            else:
                error = {"stage": "error", "run_id": run.id, "message": run.error}
                yield f"data: {json.dumps(error)}\n\n"
            yield "event: done\ndata: {}\n\n"
        finally:
            # Client went away before the run finished.
            if not task.done():
                logger.info("[API] Stream closed, cancelling analysis")
                cancel_event.set()

    return StreamingResponse(generate(), media_type="text/event-stream", headers=settings.SSE_HEADERS)
