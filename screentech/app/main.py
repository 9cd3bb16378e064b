"""FastAPI application entry point."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from screentech.agent.engine import ReplyStream
from screentech.agent.errors import (
    ConfirmationRequiredError,
    CorruptRecordError,
    EmptyMessageError,
    InvalidSerialError,
    MessageNotFoundError,
    NotVerifiableError,
    NotConnectedError,
    ReplyInProgressError,
    ScreenTechError,
)
from screentech.agent.provider import ChatProvider
from screentech.agent.session import SessionManager, build_manager
from screentech.app.config import Settings, get_settings, settings
from screentech.app.models import (
    ChatRequest,
    ClearHistoryRequest,
    ConnectRequest,
    HealthResponse,
    KnowledgeEntry,
    SessionState,
    VerifyResponse,
)
from screentech.database.storage import KeyValueStorage
from screentech.monitoring.observability import CHAT_LATENCY, CHAT_REQUESTS, setup_observability

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ERROR_STATUS = {
    InvalidSerialError: 422,
    EmptyMessageError: 422,
    NotVerifiableError: 422,
    ConfirmationRequiredError: 400,
    NotConnectedError: 409,
    ReplyInProgressError: 409,
    MessageNotFoundError: 404,
    CorruptRecordError: 500,
}


def _status_for(exc: ScreenTechError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


def get_manager(request: Request) -> SessionManager:
    return request.app.state.manager


def create_app(
    config: Settings = settings,
    storage: Optional[KeyValueStorage] = None,
    provider: Optional[ChatProvider] = None,
) -> FastAPI:
    manager = build_manager(config, storage, provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if config.auto_resume:
            manager.resume()
        yield

    app = FastAPI(title=config.app_name, version="0.1.0", lifespan=lifespan)
    app.state.manager = manager
    app.state.langsmith = setup_observability(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in config.allowed_origins] or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ScreenTechError)
    async def screentech_error_handler(request: Request, exc: ScreenTechError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.get("/")
    async def root():
        return {"status": "ok", "message": f"{config.app_name} is running"}

    @app.get("/health", response_model=HealthResponse)
    def health(settings: Settings = Depends(get_settings)) -> HealthResponse:
        return HealthResponse(status="ok", environment=settings.environment)

    @app.get("/metrics")
    def metrics() -> PlainTextResponse:
        payload = generate_latest()
        return PlainTextResponse(payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/api/session", response_model=SessionState)
    def session_state(manager: SessionManager = Depends(get_manager)) -> SessionState:
        return manager.state()

    @app.post("/api/connect", response_model=SessionState)
    def connect(request: ConnectRequest, manager: SessionManager = Depends(get_manager)) -> SessionState:
        manager.connect(request.serial_number)
        return manager.state()

    @app.post("/api/connect/learning-unit", response_model=SessionState)
    def connect_learning_unit(manager: SessionManager = Depends(get_manager)) -> SessionState:
        manager.connect_learning_unit()
        return manager.state()

    @app.post("/api/disconnect", response_model=SessionState)
    def disconnect(manager: SessionManager = Depends(get_manager)) -> SessionState:
        manager.disconnect()
        return manager.state()

    @app.post("/api/history/clear", response_model=SessionState)
    def clear_history(
        request: ClearHistoryRequest, manager: SessionManager = Depends(get_manager)
    ) -> SessionState:
        manager.clear_history(confirmed=request.confirm)
        return manager.state()

    @app.post("/api/context/refresh", response_model=SessionState)
    def refresh_context(manager: SessionManager = Depends(get_manager)) -> SessionState:
        manager.refresh_context()
        return manager.state()

    @app.get("/api/knowledge", response_model=List[KnowledgeEntry])
    def knowledge(manager: SessionManager = Depends(get_manager)) -> List[KnowledgeEntry]:
        return manager.knowledge()

    @app.post("/api/messages/{message_id}/verify", response_model=VerifyResponse)
    def verify(message_id: str, manager: SessionManager = Depends(get_manager)) -> VerifyResponse:
        entry = manager.verify_fix(message_id)
        message = next(m for m in manager.session.transcript if m.id == message_id)
        return VerifyResponse(message=message, knowledge_entry=entry)

    @app.post("/api/chat")
    async def chat(request: ChatRequest, manager: SessionManager = Depends(get_manager)) -> StreamingResponse:
        stream = manager.send(request.message, request.image)
        if stream is None:
            raise HTTPException(status_code=409, detail="No press connected")
        CHAT_REQUESTS.labels(endpoint="chat").inc()
        headers = {"X-Message-Id": stream.message.id}
        return StreamingResponse(_timed(stream, "chat"), media_type="text/plain", headers=headers)

    @app.websocket("/api/ws/chat")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        try:
            while True:
                data = await websocket.receive_json()
                try:
                    stream = manager.send(data.get("message", ""), data.get("image"))
                except ScreenTechError as exc:
                    await websocket.send_json({"type": "error", "detail": str(exc)})
                    continue
                if stream is None:
                    await websocket.send_json({"type": "error", "detail": "No press connected"})
                    continue
                CHAT_REQUESTS.labels(endpoint="ws").inc()
                async for delta in _timed(stream, "ws"):
                    await websocket.send_json({"type": "delta", "message_id": stream.message.id, "text": delta})
                await websocket.send_json({"type": "done", "message": stream.message.model_dump(mode="json")})
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")

    return app


async def _timed(stream: ReplyStream, endpoint: str) -> AsyncIterator[str]:
    start = time.perf_counter()
    async for delta in stream:
        yield delta
    CHAT_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - start)


app = create_app(settings)
