"""agentrelay — FastAPI app serving worker graphs over SSE.

Loads config.yaml on startup. Exposes /graphs/{graph_id}/run for SSE
streaming, plus operational endpoints for health, config viewing, and
hot-reload.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from agentrelay import runtime
from agentrelay.config import get_config, load_config, reload_config
from agentrelay.schemas import RunRequest

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load config on startup."""
    config = load_config()
    logger.info(
        f"agentrelay started (origins={config.allowed_origins}, "
        f"graphs={[g.id for g in config.graphs]})"
    )
    yield
    runtime.invalidate_engines()
    logger.info("agentrelay shutting down")


# CORS origins come from config, so it is loaded before the app is built.
_boot_config = load_config()

app = FastAPI(title="agentrelay", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Runtime endpoint
# ---------------------------------------------------------------------------


@app.post("/graphs/{graph_id}/run")
async def run_graph(graph_id: str, request: RunRequest):
    """Run a worker graph on the prompt.

    Emits one SSE frame per text fragment, then exactly one terminal frame.
    """
    config = get_config()

    try:
        graph_cfg = config.get_graph(graph_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Graph '{graph_id}' not found")

    entry = request.entry or graph_cfg.entry
    if entry == graph_cfg.guardrail or entry not in {w.name for w in graph_cfg.workers}:
        raise HTTPException(status_code=422, detail=f"'{entry}' is not a valid entry worker for '{graph_id}'")

    engine = runtime.get_engine(config, graph_id)

    async def stream():
        async for frame in runtime.execute_run(engine, entry, request.prompt, request.session_token):
            yield runtime.to_sse(frame)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    """Liveness check, with the ids of the graphs that can be run."""
    return {"status": "healthy", "graphs": [g.id for g in get_config().graphs]}


@app.get("/config")
async def show_config():
    """The validated configuration currently in effect."""
    return get_config().model_dump()


@app.post("/reload")
async def reload():
    """Re-read the config file; engines are rebuilt lazily on the next run."""
    try:
        reloaded = reload_config()
    except Exception as e:
        logger.error(f"Reload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Reload failed: {e}")
    runtime.invalidate_engines()
    return {"status": "reloaded", "graphs": [g.id for g in reloaded.graphs]}


def serve() -> None:
    """Console entry point."""
    uvicorn.run(
        "agentrelay.main:app",
        host=os.environ.get("AGENTRELAY_HOST", "0.0.0.0"),
        port=int(os.environ.get("AGENTRELAY_PORT", "5005")),
    )
