"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from transcript_pipeline import __version__
from transcript_pipeline.api.routes import router
from transcript_pipeline.config import Settings
from transcript_pipeline.errors import InvalidRequestError, JobNotFoundError, TaskExecutionError
from transcript_pipeline.pipeline.runtime import PipelineRuntime, open_runtime

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    runtime: PipelineRuntime | None = None,
) -> FastAPI:
    """Build the app; an injected runtime is used as-is and not closed on shutdown."""

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        if runtime is not None:
            application.state.runtime = runtime
            yield
            return
        with open_runtime(settings or Settings.from_env()) as opened:
            application.state.runtime = opened
            logger.info("Transcript pipeline API ready (db=%s)", opened.settings.db_path)
            yield

    app = FastAPI(title="Transcript Pipeline API", version=__version__, lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime
    app.include_router(router)
    app.add_exception_handler(InvalidRequestError, _invalid_request)
    app.add_exception_handler(JobNotFoundError, _job_not_found)
    app.add_exception_handler(TaskExecutionError, _task_failed)
    return app


async def _invalid_request(_: Request, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(error)})


async def _job_not_found(_: Request, error: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(error)})


async def _task_failed(_: Request, error: Exception) -> JSONResponse:
    task_id = error.task_id if isinstance(error, TaskExecutionError) else None
    return JSONResponse(
        status_code=500,
        content={"success": False, "task_id": task_id, "error": str(error)},
    )
