"""FastAPI server for the clinic agent service.

Run with:
    uv run uvicorn agent_service.server:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from agent_service.agent import build_orchestrator
from agent_service.api.routes import router
from agent_service.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the model client, store and orchestrator once per process.

    Pending outcome-log writes are drained on shutdown so the last
    requests' audit rows are not lost.
    """
    logger.info("Building agent orchestrator…")
    orchestrator = build_orchestrator()
    application.state.orchestrator = orchestrator
    logger.info("Agent ready.")
    yield
    await orchestrator.outcome_logger.drain()
    application.state.orchestrator = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="agent-service",
    description=(
        "Clinic messaging agent: classifies an inbound message, decides the "
        "next step and returns the reply plus side-effect actions."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID to every request for log correlation.

    A client-supplied ``X-Request-ID`` is reused, otherwise one is
    generated; either way it is echoed in the response headers.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router)


if __name__ == "__main__":
    logger.info("Starting agent-service on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("agent_service.server:app", host=SERVER_HOST, port=SERVER_PORT)
