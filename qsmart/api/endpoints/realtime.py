# qsmart/api/endpoints/realtime.py
import json
import logging
from typing import Dict, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from jose import JWTError

from qsmart import auth
from qsmart.models import Role

logger = logging.getLogger(__name__)

router = APIRouter()


def user_channel(user_id: int) -> str:
    return f"user-{user_id}"


def queue_channel(queue_id: int) -> str:
    return f"queue-{queue_id}"


def management_channel(queue_id: int) -> str:
    return f"manage-queue-{queue_id}"


class ConnectionManager:
    """Maps channels to the WebSockets subscribed to them."""

    def __init__(self):
        self.channels: Dict[str, Set[WebSocket]] = {}

    def subscribe(self, channel: str, websocket: WebSocket):
        self.channels.setdefault(channel, set()).add(websocket)

    def unsubscribe(self, channel: str, websocket: WebSocket):
        clients = self.channels.get(channel)
        if clients is None:
            return
        clients.discard(websocket)
        if not clients:
            del self.channels[channel]

    def disconnect(self, websocket: WebSocket):
        for channel in list(self.channels):
            self.unsubscribe(channel, websocket)

    def subscribers(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))

    async def broadcast(self, channel: str, event: str, payload: dict):
        """Send to every client of a channel; clients that fail are dropped."""
        message = json.dumps({"event": event, "data": payload})
        for client in list(self.channels.get(channel, ())):
            try:
                await client.send_text(message)
            except Exception:
                logger.debug("Dropping dead WebSocket from %s", channel)
                self.disconnect(client)

    async def send_to_user(self, user_id: int, event: str, payload: dict):
        await self.broadcast(user_channel(user_id), event, payload)

    async def send_to_queue(self, queue_id: int, event: str, payload: dict):
        await self.broadcast(queue_channel(queue_id), event, payload)

    async def send_to_queue_managers(self, queue_id: int, event: str, payload: dict):
        await self.broadcast(management_channel(queue_id), event, payload)


manager = ConnectionManager()


def resolve_channel(message: dict, user_id: int, role: str) -> str:
    """Channel named by a client action; raises ValueError when not allowed."""
    action = message.get("action")
    if action == "join-user":
        return user_channel(user_id)

    queue_id = int(message["queue_id"])
    if action in ("join-queue", "leave-queue"):
        return queue_channel(queue_id)
    if action in ("join-queue-management", "leave-queue-management"):
        if role not in (Role.teacher.value, Role.admin.value):
            raise ValueError("Only teachers and admins can manage queues")
        return management_channel(queue_id)
    raise ValueError(f"Unknown action: {action}")


@router.websocket("/ws/updates")
async def websocket_updates(websocket: WebSocket, token: str = Query(...)):
    try:
        claims = auth.decode_access_token(token)
        user_id = int(claims["sub"])
    except (JWTError, ValueError):
        await websocket.close(code=4001, reason="Invalid token")
        return

    await websocket.accept()
    logger.info("WebSocket connected for user %s", user_id)
    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
                channel = resolve_channel(message, user_id, claims.get("role"))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                await websocket.send_json({"event": "error", "data": {"message": str(exc)}})
                continue

            if message["action"].startswith("leave"):
                manager.unsubscribe(channel, websocket)
                await websocket.send_json({"event": "unsubscribed", "data": {"channel": channel}})
            else:
                manager.subscribe(channel, websocket)
                await websocket.send_json({"event": "subscribed", "data": {"channel": channel}})
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for user %s", user_id)
    finally:
        manager.disconnect(websocket)
