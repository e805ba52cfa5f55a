"""FastAPI endpoints for chat persistence side effects and the realtime socket."""

from __future__ import annotations

from contextlib import asynccontextmanager
import json
import logging
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import BackendSettings, load_settings
from .errors import PlannerError
from .events import MAX_TEXT_LENGTH, AttachmentPayload, attachments_as_dicts
from .hub import RealtimeHub
from .store import PlannerStore, create_store

logger = logging.getLogger(__name__)


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MessageRequest(_Body):
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class ReactionRequest(_Body):
    emoji: str = Field(min_length=1, max_length=32)


class StartChatRequest(_Body):
    other_user_id: str = Field(alias="otherUserId", min_length=1)


class SeenRequest(_Body):
    message_ids: list[str] | None = Field(default=None, alias="messageIds")


class VoteRequest(_Body):
    option_id: str = Field(alias="optionId", min_length=1)


def _default_store(settings: BackendSettings) -> PlannerStore:
    return create_store(database_url=settings.database_url, server_salt=settings.server_salt)


def create_app(store: PlannerStore | None = None, settings: BackendSettings | None = None) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()
    planner_store = store if store is not None else _default_store(app_settings)
    hub = RealtimeHub(store=planner_store, realtime_errors=app_settings.realtime_errors)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await hub.shutdown()

    app = FastAPI(title="PlanPal Realtime API", version="0.3.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.state.hub = hub
    app.state.settings = app_settings

    @app.exception_handler(PlannerError)
    async def planner_error_handler(request: Request, exc: PlannerError) -> JSONResponse:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    def get_store() -> PlannerStore:
        return planner_store

    async def current_user(
        token: str = Query(min_length=1),
        local_store: PlannerStore = Depends(get_store),
    ) -> str:
        user_id = await local_store.resolve_token(token)
        if user_id is None:
            raise HTTPException(status_code=401, detail="Unauthorized - Invalid Token")
        return user_id

    @app.get("/")
    def read_root() -> dict[str, str]:
        return {"message": "PlanPal Backend Running"}

    @app.get("/api/events/{event_id}/messages")
    async def list_event_messages(
        event_id: str,
        user_id: str = Depends(current_user),
        local_store: PlannerStore = Depends(get_store),
    ) -> list[dict[str, Any]]:
        await hub.engine.authorize_event_room(user_id, event_id)
        return await local_store.list_messages(event_id)

    @app.post("/api/events/{event_id}/messages", status_code=201)
    async def post_event_message(
        event_id: str,
        payload: MessageRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        return await hub.engine.create_event_message(
            user_id=user_id,
            event_id=event_id,
            text=payload.text,
            attachments=attachments_as_dicts(payload.attachments),
        )

    @app.post("/api/messages/{message_id}/reactions")
    async def post_reaction(
        message_id: str,
        payload: ReactionRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        return await hub.engine.set_reaction(user_id=user_id, message_id=message_id, emoji=payload.emoji)

    @app.get("/api/events/{event_id}/members")
    async def list_event_members(event_id: str, user_id: str = Depends(current_user)) -> dict[str, Any]:
        return await hub.engine.event_members(user_id, event_id)

    @app.post("/api/events/{event_id}/polls/{poll_id}/vote")
    async def post_poll_vote(
        event_id: str,
        poll_id: str,
        payload: VoteRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        return await hub.engine.update_poll(
            user_id=user_id, event_id=event_id, poll_id=poll_id, option_id=payload.option_id
        )

    @app.post("/api/chat/start")
    async def start_chat(
        payload: StartChatRequest,
        user_id: str = Depends(current_user),
        local_store: PlannerStore = Depends(get_store),
    ) -> dict[str, Any]:
        if payload.other_user_id == user_id:
            raise HTTPException(status_code=400, detail="Cannot start a chat with yourself")
        if await local_store.get_user(payload.other_user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        return await local_store.start_chat(user_id, payload.other_user_id)

    @app.get("/api/chat/contacts")
    async def list_contacts(
        user_id: str = Depends(current_user),
        local_store: PlannerStore = Depends(get_store),
    ) -> list[dict[str, Any]]:
        return await local_store.list_users(exclude=user_id)

    @app.get("/api/chat/list")
    async def list_chats(
        user_id: str = Depends(current_user),
        local_store: PlannerStore = Depends(get_store),
    ) -> list[dict[str, Any]]:
        return await local_store.list_chats(user_id)

    @app.get("/api/chat/{chat_id}/messages")
    async def list_chat_messages(
        chat_id: str,
        user_id: str = Depends(current_user),
        local_store: PlannerStore = Depends(get_store),
    ) -> list[dict[str, Any]]:
        await hub.engine.authorize_chat_room(user_id, chat_id)
        return await local_store.list_direct_messages(chat_id)

    @app.post("/api/chat/{chat_id}/message")
    async def post_chat_message(
        chat_id: str,
        payload: MessageRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        return await hub.engine.send_direct_message(
            user_id=user_id,
            chat_id=chat_id,
            text=payload.text,
            attachments=attachments_as_dicts(payload.attachments),
        )

    @app.post("/api/chat/{chat_id}/seen")
    async def post_chat_seen(
        chat_id: str,
        payload: SeenRequest,
        user_id: str = Depends(current_user),
    ) -> dict[str, Any]:
        receipt = await hub.engine.mark_seen(user_id=user_id, chat_id=chat_id, message_ids=payload.message_ids)
        return receipt.as_payload()

    @app.websocket("/ws")
    async def realtime_ws(
        websocket: WebSocket,
        local_store: PlannerStore = Depends(get_store),
    ) -> None:
        token = websocket.query_params.get("token")
        if token is None or token == "":
            await websocket.close(code=1008)
            return
        user_id = await local_store.resolve_token(token)
        if user_id is None:
            await websocket.close(code=1008)
            return

        session = await hub.connect(websocket=websocket, user_id=user_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                text = message.get("text")
                if text is None:
                    logger.debug("Dropping binary frame from %s", session.session_id)
                    continue
                try:
                    raw = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("Dropping non-JSON frame from %s", session.session_id)
                    continue
                await hub.dispatch(session, raw)
        except WebSocketDisconnect:
            pass
        finally:
            hub.disconnect(session.session_id)

    return app


app = create_app()
