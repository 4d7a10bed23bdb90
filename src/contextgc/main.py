import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from .errors import PruneRequestError, SessionNotFoundError
from .schemas import PruneRequest, PruneResponse, TransformRequest, TransformResponse
from .services.context_service import (
    close_context_service,
    get_context_service,
    session_stats,
)
from .settings import get_settings
from .tools.prune_tools import ManualPruneOutcome


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("contextgc")
    if logger.handlers:
        return logger

    logger.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logger


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


settings = get_settings()
LOGGER = setup_server_logging("DEBUG" if settings.debug else settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the context service at startup; drop session state on shutdown."""
    service = get_context_service()
    LOGGER.info(
        "Context GC ready (protected=%s, allow_prune_inputs=%s, notification=%s)",
        service.config.protected_tools,
        service.config.allow_prune_inputs,
        service.config.prune_notification,
    )

    yield

    LOGGER.info("Shutting down...")
    close_context_service()


app = FastAPI(
    title="Context GC",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _prune_response(
    outcome: ManualPruneOutcome,
    notification: str | None,
    messages: List[dict[str, Any]] | None,
) -> PruneResponse:
    return PruneResponse(
        result=outcome.to_text(),
        tools_pruned=outcome.result.tools_pruned,
        tokens_saved=outcome.result.tokens_saved,
        pruned_ids=outcome.result.pruned_ids,
        dropped_ids=outcome.dropped_ids,
        notification=notification,
        messages=messages,
    )


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}


@app.post("/sessions/{session_id}/transform", response_model=TransformResponse)
async def transform(session_id: str, request: TransformRequest) -> TransformResponse:
    """Sync the tool cache, run automatic collection and redact the transcript."""
    result = await get_context_service().transform(session_id, request.messages)
    return TransformResponse(
        messages=result.messages,
        prunable_tools=result.prunable_tools,
        notification=result.notification,
        tokens_collected=result.gc.tokens_collected,
        tools_collected=result.gc.tools_deduped,
    )


@app.post("/sessions/{session_id}/prune", response_model=PruneResponse)
async def prune(session_id: str, request: PruneRequest) -> PruneResponse:
    """Manual prune tool: collect tool calls by numeric id."""
    try:
        outcome, notification = await get_context_service().prune(
            session_id, request.items, request.reason, request.messages
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PruneRequestError as e:
        LOGGER.info("Rejected prune request session_id=%s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _prune_response(outcome, notification, request.messages)


@app.post("/sessions/{session_id}/distill", response_model=PruneResponse)
async def distill(session_id: str, request: PruneRequest) -> PruneResponse:
    """Manual distill tool: collect tool calls whose facts were distilled."""
    try:
        outcome, notification = await get_context_service().distill(
            session_id, request.items, request.messages
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PruneRequestError as e:
        LOGGER.info("Rejected distill request session_id=%s: %s", session_id, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _prune_response(outcome, notification, request.messages)


@app.get("/sessions/{session_id}/prunable")
async def prunable(session_id: str) -> dict[str, Any]:
    """Current <prunable-tools> listing for the session."""
    try:
        text = get_context_service().prunable_tools(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"session_id": session_id, "prunable_tools": text}


@app.get("/sessions/{session_id}/stats")
async def stats(session_id: str) -> dict[str, Any]:
    """Lifetime pruning statistics for the session."""
    try:
        state = get_context_service().find_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return session_stats(state)


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    """End a conversation and drop its state."""
    return {"session_id": session_id, "deleted": get_context_service().delete_session(session_id)}


@app.websocket("/ws/sessions/{session_id}")
async def session_ws(websocket: WebSocket, session_id: str) -> None:
    """Per-conversation WebSocket: one JSON request per turn.

    Expected Input (JSON):
        {"type": "transform", "messages": [...]}
        {"type": "prune" | "distill", "items": [...], "reason"?: str}

    Response Format:
        - {"type": "notification", "data": str} - pruning summary, when any
        - {"type": "transcript", "messages": [...], "prunable_tools": str}
        - {"type": "pruned", "result": str, "pruned_ids": [...]}
        - {"type": "error", "data": str}
    """
    await websocket.accept()
    service = get_context_service()

    async def send_notification(message: str) -> None:
        await websocket.send_json({"type": "notification", "data": message})

    LOGGER.info("WS context session start session_id=%s", session_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as e:
                LOGGER.error("Invalid WS payload (not JSON): %s", e)
                await websocket.send_json({"type": "error", "data": "Invalid JSON payload"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "data": "Payload must be an object"})
                continue

            kind = payload.get("type") or "transform"
            if kind == "transform":
                messages = payload.get("messages")
                if not isinstance(messages, list):
                    await websocket.send_json({"type": "error", "data": "messages must be a list"})
                    continue
                result = await service.transform(session_id, messages, sender=send_notification)
                await websocket.send_json(
                    {
                        "type": "transcript",
                        "messages": result.messages,
                        "prunable_tools": result.prunable_tools,
                    }
                )
            elif kind in ("prune", "distill"):
                try:
                    if kind == "prune":
                        outcome, _ = await service.prune(
                            session_id,
                            payload.get("items"),
                            payload.get("reason"),
                            sender=send_notification,
                        )
                    else:
                        outcome, _ = await service.distill(
                            session_id, payload.get("items"), sender=send_notification
                        )
                except (PruneRequestError, SessionNotFoundError) as e:
                    await websocket.send_json({"type": "error", "data": str(e)})
                    continue
                await websocket.send_json(
                    {
                        "type": "pruned",
                        "result": outcome.to_text(),
                        "pruned_ids": outcome.result.pruned_ids,
                    }
                )
            else:
                await websocket.send_json({"type": "error", "data": f"Unknown request type: {kind}"})

    except WebSocketDisconnect:
        LOGGER.info("WS disconnect session_id=%s", session_id)
