"""
FastAPI application - API gateway for the AgentHub job engine.
Provides REST endpoints for job submission and control, plus a per-tenant
WebSocket that streams job lifecycle events.
"""

import contextvars
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from agenthub.orchestrator.engine import JobOrchestrator
from agenthub.persistence.job_store import create_job_store
from agenthub.persistence.lead_store import InMemoryLeadStore
from agenthub.persistence.seed import load_seed_file
from agenthub.shared.config import load_config
from agenthub.shared.constants import (
    DEFAULT_BULK_PRIORITY, DEFAULT_RECENT_JOBS_LIMIT, DEFAULT_SINGLE_PRIORITY,
)
from agenthub.shared.entitlements import PlanEntitlements
from agenthub.shared.errors import (
    AgentHubError, ForbiddenError, InvalidTransitionError, JobNotFoundError,
    NoWorkError, StorageError, UnknownAgentError,
)
from agenthub.shared.models import AgentType, BulkSelection, LeadFilter, SelectionMode
from agenthub.shared.vault import LocalCredentialVault

logger = logging.getLogger(__name__)

# ── Request ID tracking via ContextVar ────────────────────────────────────────
_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIDFilter(logging.Filter):
    """Injects the current request ID into every log record."""
    def filter(self, record):
        record.request_id = _request_id_ctx.get("-")
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Generates a unique request ID, stores it in ContextVar, adds to response header."""
    async def dispatch(self, request: Request, call_next):
        request_id = uuid.uuid4().hex[:12]
        _request_id_ctx.set(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# Global references set during lifespan
_orchestrator: JobOrchestrator = None
_config = None


def _configure_logging(config) -> None:  # pragma: no cover
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    log_format = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s:%(message)s"

    rid_filter = RequestIDFilter()
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addFilter(rid_filter)

    if not root_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        root_logger.addHandler(console)

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
        handler.addFilter(rid_filter)

    # uvicorn loggers don't propagate to root
    for uv_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        uv_log = logging.getLogger(uv_logger_name)
        uv_log.addFilter(rid_filter)
        for handler in uv_log.handlers:
            handler.setFormatter(formatter)
            handler.addFilter(rid_filter)

    if config.log_file_dir:
        os.makedirs(config.log_file_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file = os.path.join(config.log_file_dir, f"agenthub_{timestamp}.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(rid_filter)
        root_logger.addHandler(file_handler)
        for uv_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(uv_logger_name).addHandler(file_handler)
        logger.info(f"Logging to file: {log_file}")


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    """Application startup and shutdown."""
    global _orchestrator, _config

    _config = load_config()
    _configure_logging(_config)

    store = create_job_store(_config.store)
    vault = LocalCredentialVault(_config.vault.encryption_key)
    entitlements = PlanEntitlements()
    leads = InMemoryLeadStore()
    if _config.seed_file:
        await load_seed_file(_config.seed_file, vault, entitlements, leads)

    _orchestrator = JobOrchestrator(_config, store, vault, entitlements, leads)
    await _orchestrator.start()

    logger.info(f"AgentHub started ({_config.environment})")
    yield
    await _orchestrator.stop()
    logger.info("AgentHub shutdown")


app = FastAPI(
    title="AgentHub",
    description="Multi-tenant agent job orchestration",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)


# --- Error mapping ---

_ERROR_STATUS = (
    (ForbiddenError, 403),
    (NoWorkError, 400),
    (UnknownAgentError, 404),
    (JobNotFoundError, 404),
    (InvalidTransitionError, 409),
    (StorageError, 503),
)


@app.exception_handler(AgentHubError)
async def agenthub_error_handler(request: Request, exc: AgentHubError):
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# --- Pydantic models for request validation ---

class SingleJobRequest(BaseModel):
    agent_type: str = AgentType.FALCON.value
    lead_id: str
    priority: int = DEFAULT_SINGLE_PRIORITY


class LeadFilterRequest(BaseModel):
    industry: Optional[str] = None
    location: Optional[str] = None
    lead_status: Optional[str] = None
    qualified: Optional[bool] = None


class BulkJobRequest(BaseModel):
    agent_type: str = AgentType.FALCON.value
    mode: SelectionMode = SelectionMode.EXPLICIT
    lead_ids: list[str] = Field(default_factory=list)
    filters: LeadFilterRequest = Field(default_factory=LeadFilterRequest)
    include_already_processed: bool = False
    priority: int = DEFAULT_BULK_PRIORITY

    def to_selection(self) -> BulkSelection:
        return BulkSelection(
            mode=self.mode,
            lead_ids=tuple(self.lead_ids),
            filters=LeadFilter(**self.filters.model_dump()),
            include_already_processed=self.include_already_processed,
            priority=self.priority,
        )


def _require_orchestrator() -> JobOrchestrator:
    if not _orchestrator:
        raise HTTPException(503, "Not ready")
    return _orchestrator


# --- API Endpoints ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/status")
async def get_status():
    if not _orchestrator:
        raise HTTPException(503, "Orchestrator not initialized")
    return await _orchestrator.get_status()


@app.post("/api/tenants/{tenant_id}/jobs/single", status_code=202)
async def submit_single(tenant_id: str, req: SingleJobRequest):
    orchestrator = _require_orchestrator()
    result = await orchestrator.submit_single(tenant_id, req.agent_type, req.lead_id, req.priority)
    return result.to_dict()


@app.post("/api/tenants/{tenant_id}/jobs/bulk", status_code=202)
async def submit_bulk(tenant_id: str, req: BulkJobRequest):
    orchestrator = _require_orchestrator()
    result = await orchestrator.submit_bulk(tenant_id, req.agent_type, req.to_selection())
    return result.to_dict()


@app.get("/api/tenants/{tenant_id}/jobs")
async def list_jobs(tenant_id: str, limit: int = DEFAULT_RECENT_JOBS_LIMIT):
    orchestrator = _require_orchestrator()
    jobs = await orchestrator.list_recent_jobs(tenant_id, limit)
    return {"jobs": [job.to_dict() for job in jobs], "count": len(jobs)}


@app.get("/api/tenants/{tenant_id}/jobs/{job_id}")
async def get_job(tenant_id: str, job_id: str):
    orchestrator = _require_orchestrator()
    job = await orchestrator.get_job(job_id, tenant_id)
    return job.to_dict()


@app.post("/api/tenants/{tenant_id}/jobs/{job_id}/cancel")
async def cancel_job(tenant_id: str, job_id: str):
    orchestrator = _require_orchestrator()
    job = await orchestrator.cancel(job_id, tenant_id)
    return {"job_id": job.id, "status": job.status.value}


@app.post("/api/tenants/{tenant_id}/jobs/{job_id}/retry")
async def retry_job(tenant_id: str, job_id: str):
    orchestrator = _require_orchestrator()
    job = await orchestrator.retry(job_id, tenant_id)
    return {"job_id": job.id, "status": job.status.value, "retry_count": job.retry_count}


@app.delete("/api/tenants/{tenant_id}/jobs")
async def purge_jobs(tenant_id: str):
    orchestrator = _require_orchestrator()
    purged = await orchestrator.purge_terminal(tenant_id)
    return {"purged": purged}


@app.post("/api/tenants/{tenant_id}/leads/{lead_id}/auto-qualify")
async def auto_qualify(tenant_id: str, lead_id: str):
    orchestrator = _require_orchestrator()
    result = await orchestrator.submit_auto(tenant_id, lead_id)
    if result is None:
        return {"skipped": True, "reason": "Lead already qualified"}
    return {"skipped": False, **result.to_dict()}


@app.post("/api/tenants/{tenant_id}/credentials/invalidate")
async def invalidate_credentials(tenant_id: str):
    orchestrator = _require_orchestrator()
    dropped = orchestrator.invalidate_tenant(tenant_id)
    return {"tenant_id": tenant_id, "agents_dropped": dropped}


# --- Live events ---

@app.websocket("/ws/{tenant_id}")
async def tenant_events(websocket: WebSocket, tenant_id: str):
    """Tenant room: receives every job event for the tenant while connected."""
    if not _orchestrator:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    connection_id = uuid.uuid4().hex
    broadcaster = _orchestrator.broadcaster
    broadcaster.register_connection(tenant_id, connection_id, websocket)
    try:
        await websocket.send_json({
            "type": "connection_established",
            "data": {
                "tenantId": tenant_id,
                "connectionId": connection_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        })
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning(f"Unparseable WebSocket message from connection {connection_id}")
                continue
            message_type = message.get("type") if isinstance(message, dict) else None
            if message_type == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "data": {"timestamp": datetime.now(timezone.utc).isoformat()},
                })
            elif message_type == "subscribe_to_jobs":
                await websocket.send_json({
                    "type": "subscription_confirmed",
                    "data": {"subscription": "job_updates"},
                })
            else:
                logger.debug(f"Ignored WebSocket message type: {message_type}")
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for tenant {tenant_id}")
    finally:
        broadcaster.unregister_connection(connection_id)


def main() -> None:  # pragma: no cover
    import uvicorn

    config = load_config()
    uvicorn.run("agenthub.api.app:app", host=config.api_host, port=config.api_port)
