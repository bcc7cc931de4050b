import json
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError

from app.core.deps import AuthorizationService
from app.core.enum import SocketEvent
from app.core.exceptions import BadRequestException
from app.core.security import SecurityService
from app.core.ws_manager import WSConnectionManager, doubt_room
from app.db.models.database import User
from app.db.session import Database
from app.schemas.shares.doubts import SocketSendMessageSchema, SocketTypingSchema
from app.services.shares.doubts import DoubtService

router = APIRouter(tags=["Doubt Socket"])


def _decode_frame(message: dict) -> Any:
    text = message.get("text")
    if text is None:
        raw = message.get("bytes")
        if raw is None:
            raise ValueError("empty frame")
        text = raw.decode("utf-8")
    return json.loads(text)


def _thread_id(data: Any) -> int:
    """joinDoubtRoom / leaveDoubtRoom accept a bare id or {"threadId": id}."""
    if isinstance(data, dict):
        data = data.get("threadId")
    if isinstance(data, bool):
        data = None
    if isinstance(data, str) and data.strip().isdigit():
        data = int(data.strip())
    if not isinstance(data, int) or data <= 0:
        raise BadRequestException(
            "threadId is required",
            errors=[{"field": "threadId", "message": "Must be a positive integer"}],
        )
    return data


class DoubtSocketSession:
    """One authenticated connection. Each event gets its own DB session."""

    def __init__(self, websocket: WebSocket, user: User):
        self.websocket = websocket
        self.user = user
        state = websocket.app.state
        self.manager: WSConnectionManager = state.ws_manager
        self.database: Database = state.db
        self.settings = state.settings

    async def error(self, message: str, status_code: int = 400):
        await self.manager.send(
            self.websocket,
            SocketEvent.ERROR.value,
            {"message": message, "status_code": status_code},
        )

    async def on_join(self, data: Any):
        thread_id = _thread_id(data)
        room = doubt_room(thread_id)
        # re-joining is not an error
        self.manager.connect(self.websocket, room)
        await self.manager.send(
            self.websocket,
            SocketEvent.JOINED_ROOM.value,
            {"threadId": thread_id, "roomName": room},
        )

    async def on_leave(self, data: Any):
        thread_id = _thread_id(data)
        room = doubt_room(thread_id)
        self.manager.leave(self.websocket, room)
        await self.manager.send(
            self.websocket,
            SocketEvent.LEFT_ROOM.value,
            {"threadId": thread_id, "roomName": room},
        )

    async def on_send_message(self, data: Any):
        payload = SocketSendMessageSchema.model_validate(data)
        async with self.database.session() as db:
            service = DoubtService(db, self.manager, self.settings)
            await service.post_message(self.user, payload.thread_id, payload.content)

    async def on_typing(self, data: Any):
        payload = SocketTypingSchema.model_validate(data)
        await self.manager.broadcast(
            doubt_room(payload.thread_id),
            SocketEvent.TYPING_UPDATE.value,
            {
                "threadId": payload.thread_id,
                "userId": self.user.id,
                "userName": self.user.name,
                "isTyping": payload.is_typing,
            },
            exclude=self.websocket,
        )

    async def dispatch(self, frame: Any):
        handlers = {
            SocketEvent.JOIN_ROOM.value: self.on_join,
            SocketEvent.LEAVE_ROOM.value: self.on_leave,
            SocketEvent.SEND_MESSAGE.value: self.on_send_message,
            SocketEvent.TYPING.value: self.on_typing,
        }
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.error('Frames must look like {"event": "...", "data": ...}')
            return
        handler = handlers.get(frame["event"])
        if handler is None:
            await self.error(f"Unknown event: {frame['event']}")
            return

        try:
            await handler(frame.get("data"))
        except HTTPException as e:
            await self.error(str(e.detail), e.status_code)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            await self.error(f"Invalid payload: {field} {first.get('msg', '')}".strip())
        except Exception as e:
            logger.exception(f"[WS][Doubts] {frame['event']} failed for user {self.user.id}: {e}")
            await self.error("Internal server error", 500)


@router.websocket("/ws/doubts")
async def ws_doubts(websocket: WebSocket):
    await websocket.accept()

    state = websocket.app.state
    user = await AuthorizationService.authenticate_websocket(
        websocket, state.db, SecurityService(state.settings)
    )
    if not user:
        return

    logger.info(f"[WS][Doubts] User {user.id} connected")
    session = DoubtSocketSession(websocket, user)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            try:
                frame = _decode_frame(message)
            except (ValueError, TypeError):
                await session.error("Frames must be JSON")
                continue
            await session.dispatch(frame)
    except WebSocketDisconnect:
        logger.info(f"[WS][Doubts] User {user.id} disconnected")
    finally:
        state.ws_manager.disconnect(websocket)
