from typing import Any, Dict, List

from fastapi import WebSocket
from loguru import logger
from starlette.websockets import WebSocketState

from app.libs.formats.datetime import serialize


def doubt_room(thread_id: int | str) -> str:
    return f"thread-{thread_id}"


class WSConnectionManager:
    """Rooms of live WebSocket connections.

    One instance per process, created in the app lifespan and injected where
    broadcasting is needed. Every frame is ``{"event": name, "data": payload}``.
    """

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    def connect(self, websocket: WebSocket, room_id: str) -> bool:
        """Add a WebSocket to a room. Returns False if it was already there."""
        members = self.active_connections.setdefault(room_id, [])
        if any(ws is websocket for ws in members):
            return False
        members.append(websocket)
        logger.info(f"🟢 Client joined {room_id} (total: {len(members)})")
        return True

    def leave(self, websocket: WebSocket, room_id: str):
        members = self.active_connections.get(room_id)
        if not members:
            return
        self.active_connections[room_id] = [ws for ws in members if ws is not websocket]
        if not self.active_connections[room_id]:
            del self.active_connections[room_id]
        logger.info(f"🔴 Client left {room_id}")

    def disconnect(self, websocket: WebSocket):
        """Drop a connection from every room it joined."""
        for room_id in list(self.active_connections):
            if any(ws is websocket for ws in self.active_connections[room_id]):
                self.leave(websocket, room_id)

    def rooms_of(self, websocket: WebSocket) -> List[str]:
        return [
            room_id
            for room_id, members in self.active_connections.items()
            if any(ws is websocket for ws in members)
        ]

    def room_size(self, room_id: str) -> int:
        return len(self.active_connections.get(room_id, []))

    @staticmethod
    async def send(websocket: WebSocket, event: str, data: Any):
        await websocket.send_json({"event": event, "data": serialize(data)})

    async def broadcast(
        self,
        room_id: str,
        event: str,
        data: Any,
        exclude: WebSocket | None = None,
    ) -> int:
        """Send an event to every connection in the room. Returns how many got it."""
        clients = list(self.active_connections.get(room_id, []))
        logger.info(f"📢 Broadcasting {event} to {room_id} ({len(clients)} client(s))")
        frame = {"event": event, "data": serialize(data)}
        delivered = 0
        for ws in clients:
            if exclude is not None and ws is exclude:
                continue
            try:
                if ws.client_state == WebSocketState.CONNECTED:
                    await ws.send_json(frame)
                    delivered += 1
                else:
                    self.disconnect(ws)
            except Exception as e:
                logger.warning(f"⚠️ WS send failed ({room_id}): {e}")
                self.disconnect(ws)
        return delivered
