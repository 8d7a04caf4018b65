from fastapi import HTTPException, Request

from statement_auditor.orchestrator import DetectionOrchestrator


def get_orchestrator(request: Request) -> DetectionOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if not orchestrator:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return orchestrator
