"""
FastAPI application - API gateway for the Carpso AI assistant.
Exposes the AI flows plus the bookmark and parking lot store to the app.
"""

import contextvars
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from backend.memory.store import create_store
from backend.orchestrator.engine import AssistantEngine
from backend.orchestrator.llm_client import create_completion_client
from backend.orchestrator.schemas import (
    PredictAvailabilityInput,
    RecommendParkingInput,
    VoiceCommandInput,
)
from backend.shared.config import LLMProvider, load_config
from backend.shared.interfaces import IParkingStore
from backend.shared.models import Bookmark

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
_engine: Optional[AssistantEngine] = None
_store: Optional[IParkingStore] = None
_config = None


def _configure_logging(config) -> None:  # pragma: no cover
    log_level = getattr(logging, config.log_level)
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
        log_file = os.path.join(config.log_file_dir, f"carpso_ai_{timestamp}.log")
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
    global _engine, _store, _config

    _config = load_config()
    _configure_logging(_config)

    _store = create_store(_config.store)
    provider = create_completion_client(_config)
    _engine = AssistantEngine(_config, provider, _store)

    logger.info(
        f"Carpso AI started (provider={_config.llm_provider.value}, "
        f"store={_config.store.backend.value}, environment={_config.environment})"
    )
    yield
    logger.info("Carpso AI shutdown")


app = FastAPI(
    title="Carpso AI",
    description="AI assistant flows for the Carpso smart parking app",
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


# --- Pydantic models for request validation ---

class BookmarkCreateRequest(BaseModel):
    label: str
    address: str = ""
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


def _require_engine() -> AssistantEngine:
    if not _engine:
        raise HTTPException(503, "Not ready")
    return _engine


def _require_store() -> IParkingStore:
    if not _store:
        raise HTTPException(503, "Not ready")
    return _store


# --- API Endpoints ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/status")
async def get_status():
    engine = _require_engine()
    status = await engine.get_status()
    if _config:
        status["retry_policy"] = asdict(_config.retry)
    return status


@app.get("/api/config")
async def get_config():
    """Return safe configuration values (no API keys)."""
    if not _config:
        raise HTTPException(503, "Not ready")

    if _config.llm_provider == LLMProvider.OPENAI_COMPATIBLE:
        model = _config.openai_compatible.model
    else:
        model = _config.anthropic.model

    return {
        "llm_provider": _config.llm_provider.value,
        "model": model,
        "max_attempts": _config.retry.max_attempts,
        "backoff_base_seconds": _config.retry.backoff_base_seconds,
        "call_timeout_seconds": _config.retry.call_timeout_seconds,
        "max_recommendations": _config.flows.max_recommendations,
        "max_concurrent_provider_calls": _config.flows.max_concurrent_provider_calls,
        "store_backend": _config.store.backend.value,
        "log_level": _config.log_level,
        "environment": _config.environment,
    }


# ── AI flows: always 200 with a typed (possibly fallback) result ──

@app.post("/api/voice-command")
async def voice_command(req: VoiceCommandInput):
    result = await _require_engine().process_voice_command(req)
    return result.to_wire()


@app.post("/api/recommendations")
async def recommendations(req: RecommendParkingInput):
    result = await _require_engine().recommend_parking(req)
    return result.to_wire()


@app.post("/api/predictions")
async def predictions(req: PredictAvailabilityInput):
    result = await _require_engine().predict_parking_availability(req)
    return result.to_wire()


# ── Store ─────────────────────────────────────────────────────

@app.get("/api/users/{user_id}/bookmarks")
async def list_bookmarks(user_id: str):
    bookmarks = await _require_store().get_bookmarks(user_id)
    return {"bookmarks": [b.to_dict() for b in bookmarks]}


@app.post("/api/users/{user_id}/bookmarks")
async def create_bookmark(user_id: str, req: BookmarkCreateRequest):
    store = _require_store()
    bookmark = Bookmark(
        label=req.label,
        address=req.address,
        latitude=req.latitude,
        longitude=req.longitude,
    )
    try:
        saved = await store.put_bookmark(user_id, bookmark)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"bookmark": saved.to_dict()}


@app.delete("/api/users/{user_id}/bookmarks/{bookmark_id}")
async def delete_bookmark(user_id: str, bookmark_id: str):
    removed = await _require_store().delete_bookmark(user_id, bookmark_id)
    if not removed:
        raise HTTPException(404, f"Bookmark {bookmark_id} not found")
    return {"deleted": bookmark_id}


@app.get("/api/lots")
async def list_lots():
    lots = await _require_store().get_parking_lots()
    return {"lots": [lot.to_dict() for lot in lots]}


@app.get("/api/lots/{lot_id}")
async def get_lot(lot_id: str):
    lot = await _require_store().get_parking_lot(lot_id)
    if lot is None:
        raise HTTPException(404, f"Parking lot {lot_id} not found")
    return lot.to_dict()
