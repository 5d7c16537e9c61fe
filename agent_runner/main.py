"""FastAPI application."""

import logging

from fastapi import Depends, FastAPI

from agent_runner.api.connectors import router as connectors_router
from agent_runner.api.tasks import router as tasks_router
from agent_runner.core.auth import verify_api_key
from agent_runner.core.config import settings

logging.basicConfig(level=settings.log_level)

app = FastAPI(
    title="Agent Runner API",
    description="Runs AI coding agents against GitHub repositories in ephemeral sandboxes",
    version="0.1.0",
)

app.include_router(tasks_router, prefix="/v1", tags=["tasks"])
app.include_router(connectors_router, prefix="/v1", tags=["connectors"])


@app.get("/health")
def health_check(api_key: str = Depends(verify_api_key)):
    """Health check endpoint."""
    return {"status": "healthy"}
