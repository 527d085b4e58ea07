"""
FastAPI application exposing the message pipeline.

Routes:
    GET  /health
    POST /chat/{room_id}     one turn; SSE stream or JSON outcome
    GET  /chat/{room_id}     the caller's transcript with a tutor
    POST /memory             snapshot a session into memory
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from classroom_tutor import __version__
from classroom_tutor.api.auth import Authenticator, resolve_author
from classroom_tutor.api.schemas import ChatRequest, MemoryRequest
from classroom_tutor.models import ChatMessage, Role
from classroom_tutor.pipeline import (
    BlockedResult,
    CompletionStreamError,
    MessageOrchestrator,
    NotFoundError,
    PipelineError,
    StreamingResult,
    TurnRequest,
)
from classroom_tutor.store import MessageStore

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Content-Type-Options": "nosniff",
}


def _error_body(exc: PipelineError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": exc.message}
    if isinstance(exc, CompletionStreamError):
        body["errorCode"] = exc.status_code
        if exc.model:
            body["model"] = exc.model
    return body


def create_app(
    orchestrator: MessageOrchestrator,
    store: MessageStore,
    authenticator: Authenticator,
    *,
    cors_origins: Optional[list[str]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await orchestrator.close()

    app = FastAPI(title="Classroom Tutor", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(_error_body(exc), status_code=exc.status_code)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "version": __version__,
            "model": orchestrator.default_model,
            "moderation": orchestrator.moderation is not None and orchestrator.moderation.config.enabled,
            "retrieval": orchestrator.composer.retrieval is not None,
            "assessment": orchestrator.assessment is not None,
            "memory": orchestrator.memory is not None,
        }

    @app.post("/chat/{room_id}")
    async def post_chat(
        room_id: str,
        body: ChatRequest,
        authorization: Optional[str] = Header(default=None),
    ):
        author = await resolve_author(authenticator, authorization)
        outcome = await orchestrator.handle(
            TurnRequest(
                room_id=room_id,
                content=body.content,
                tutor_id=body.tutor_id,
                instance_id=body.instance_id,
                model=body.model,
                country_code=body.country_code,
                message_id=body.message_id,
            ),
            author,
        )

        if isinstance(outcome, StreamingResult):
            headers = {
                **SSE_HEADERS,
                "X-Message-Id": outcome.message_id,
                "X-Assistant-Message-Id": outcome.assistant_message_id,
            }
            return StreamingResponse(outcome.frames, media_type="text/event-stream", headers=headers)
        if isinstance(outcome, BlockedResult):
            return JSONResponse(outcome.to_payload(), status_code=400)
        return JSONResponse(outcome.to_payload())

    @app.get("/chat/{room_id}")
    async def get_chat(
        room_id: str,
        tutor_id: str,
        instance_id: Optional[str] = None,
        authorization: Optional[str] = Header(default=None),
    ) -> list[dict[str, Any]]:
        author = await resolve_author(authenticator, authorization)
        room = await store.get_room(room_id)
        tutor = await store.get_tutor(tutor_id)
        if room is None or tutor is None:
            raise NotFoundError("Room or tutor not found")
        orchestrator.check_access(room, tutor, author)

        if author.is_student and instance_id is None:
            instance = await store.get_or_create_instance(room_id, author.id, tutor_id)
            instance_id = instance.id
        rows = await store.list_messages(
            room_id,
            instance_id=instance_id,
            author_id=author.id,
            tutor_id=tutor_id,
        )
        return [row.to_dict() for row in rows]

    @app.post("/memory")
    async def post_memory(
        body: MemoryRequest,
        authorization: Optional[str] = Header(default=None),
    ) -> dict[str, Any]:
        author = await resolve_author(authenticator, authorization)
        memory = orchestrator.memory
        if memory is None:
            raise NotFoundError("Session memory is disabled")

        messages = [
            ChatMessage(room_id=body.room_id or "", author_id=author.id, role=turn.role, content=turn.content)
            for turn in body.messages
            if turn.role in (Role.USER, Role.ASSISTANT)
        ]
        entry = await memory.snapshot(author.id, body.tutor_id, body.room_id, messages, body.tutor_name)
        if entry is None:
            return {"success": False, "message": "Nothing to save"}
        return {"success": True, "summary": entry.summary, "keyTopics": entry.key_topics}

    return app
