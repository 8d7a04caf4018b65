from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from statement_auditor.api.routes import analysis
from statement_auditor.core import settings
from statement_auditor.logger import get_logger, setup_logging
from statement_auditor.orchestrator import DetectionOrchestrator
from statement_auditor.reviewers.llm import reviewer_from_env

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        reviewer = reviewer_from_env()
        app.state.reviewer = reviewer
        app.state.orchestrator = DetectionOrchestrator(reviewer=reviewer)

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Statement Auditor", lifespan=lifespan)
    app.include_router(analysis.router)
    return app


app = create_app()
