"""
HTTP entry point for the decision engine.

Thin FastAPI layer over the DecisionOrchestrator: webhook intake, context
inspection, forced decisions, audit queries with replay, health, metrics and
logs.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from . import __version__
from .audit.replay import ReplayEngine
from .bootstrap import build_container
from .core.container import ServiceContainer
from .core.errors import IncompleteContextError
from .orchestrator import DecisionOrchestrator, WebhookResponse
from .utils.logger import setup_logging
from .webhooks.payloads import WebhookSource

logger = logging.getLogger(__name__)

app = FastAPI(title="Tradegate Decision Engine", version=__version__)

# Built once in the startup hook; tests may install their own before startup.
container: Optional[ServiceContainer] = None

STATUS_CODES = {"rejected": 422, "waiting": 202, "decided": 200}


def _orchestrator() -> DecisionOrchestrator:
    if container is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return container.resolve("orchestrator")


def _respond(response: WebhookResponse) -> JSONResponse:
    return JSONResponse(status_code=STATUS_CODES[response.status], content=response.to_dict())


@app.get("/")
async def root():
    return {
        "name": "Tradegate Decision Engine",
        "version": __version__,
        "status": "running" if container is not None else "starting",
    }


@app.get("/health")
async def health_check():
    orchestrator = _orchestrator()
    health = orchestrator.health()
    guard = container.resolve("guard")
    health["guard"] = guard.status()
    if guard.violations:
        health["status"] = "unhealthy"
    return health


# ============================================================================
# Webhooks
# ============================================================================

@app.post("/webhooks")
async def receive_webhook(payload: Any = Body(...)):
    """Webhook with the source detected from its content."""
    response = await _orchestrator().process_webhook(payload)
    return _respond(response)


@app.post("/webhooks/{kind}")
async def receive_typed_webhook(kind: str, payload: Any = Body(...)):
    """
    Webhook for a declared source.

    Args:
        kind: saty-phase, mtf-dots, ultimate-options, strat-exec or tradingview-signal
    """
    try:
        source = WebhookSource.from_slug(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown webhook kind: {kind}")

    response = await _orchestrator().process_webhook(payload, source)
    return _respond(response)


# ============================================================================
# Context and decisions
# ============================================================================

@app.get("/context/{symbol}")
async def get_context(symbol: str):
    return _orchestrator().context_status(symbol)


@app.post("/decide/{symbol}")
async def decide(symbol: str):
    """Force a decision cycle on the current context of a symbol."""
    try:
        response = await _orchestrator().decide_now(symbol)
    except IncompleteContextError as e:
        raise HTTPException(status_code=409, detail={"error": str(e), "missing": e.missing})
    return _respond(response)


@app.get("/decisions")
async def list_decisions(limit: int = 50, symbol: Optional[str] = None):
    limit = max(1, min(limit, 1000))
    store = _orchestrator().audit_store
    records = store.list_recent(limit, symbol=symbol.upper() if symbol else None)
    return {
        "count": len(records),
        "decisions": [record.to_dict() for record in records],
    }


@app.get("/decisions/{decision_id}")
async def get_decision(decision_id: str):
    record = _orchestrator().audit_store.get_by_id(decision_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Decision not found: {decision_id}")
    return record.to_dict()


@app.post("/decisions/{decision_id}/replay")
async def replay_decision(decision_id: str, verify: bool = False):
    record = _orchestrator().audit_store.get_by_id(decision_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Decision not found: {decision_id}")

    replay_engine: ReplayEngine = container.resolve("replay_engine")
    result = replay_engine.replay(record).to_dict()
    if verify:
        result["deterministic"] = replay_engine.verify_determinism(record)
    return result


# ============================================================================
# Observability
# ============================================================================

@app.get("/metrics")
async def get_metrics():
    _orchestrator()
    return {
        "timestamp": datetime.now().isoformat(),
        "metrics": container.resolve("metrics").snapshot(),
    }


@app.get("/logs")
async def get_logs(
    lines: int = 100,
    level: Optional[str] = None,
    search: Optional[str] = None,
    symbol: Optional[str] = None
):
    """
    Get application logs from the in-memory buffer.

    Examples:
        /logs?lines=50
        /logs?level=ERROR
        /logs?symbol=SPY
    """
    _orchestrator()
    lines = min(lines, 1000)
    log_buffer = container.resolve("log_buffer")
    logs = log_buffer.get_logs(lines=lines, level=level, search=search, symbol=symbol)

    return {
        "timestamp": datetime.now().isoformat(),
        "lines_requested": lines,
        "lines_returned": len(logs),
        "filters": {"level": level, "search": search, "symbol": symbol},
        "stats": log_buffer.get_stats(),
        "logs": logs,
    }


# ============================================================================
# Lifecycle
# ============================================================================

@app.on_event("startup")
async def startup_event():
    global container

    if container is None:
        container = build_container()

    config = container.resolve("config")
    setup_logging(
        log_level=config.system.log_level,
        log_file=config.system.log_file,
        json_format=config.system.json_logs,
        log_buffer=container.resolve("log_buffer"),
    )

    logger.info("=" * 70)
    logger.info(f"🚀 Starting Tradegate Decision Engine v{__version__} ({config.system.environment})")

    container.resolve("orchestrator")
    if config.guard.enabled:
        await container.resolve("guard").start()

    logger.info(f"✅ Rules fingerprint {container.resolve('rules').fingerprint()}")
    logger.info("=" * 70)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down decision engine...")
    if container is None:
        return

    await container.resolve("guard").stop()
    await container.resolve("market_builder").close()
    container.resolve("audit_store").close()

    logger.info("✓ Decision engine stopped")


def main():
    """Entry point for the `tradegate` command."""
    import uvicorn

    global container
    container = build_container()
    config = container.resolve("config")

    uvicorn.run(
        app,
        host=config.system.api_host,
        port=config.system.api_port,
        log_level=str(config.system.log_level).lower(),
    )


if __name__ == "__main__":
    main()
