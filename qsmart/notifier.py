"""Fan-out of ledger events to connected clients.

Delivery is best-effort: a transport failure is logged and dropped, never
retried and never raised back to the caller. The ledger has already
committed by the time anything reaches this module.
"""
import logging
from typing import Protocol

from qsmart.ledger import QUEUE_UPDATED, LedgerEvent

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send_to_user(self, user_id: int, event: str, payload: dict) -> None: ...

    async def send_to_queue(self, queue_id: int, event: str, payload: dict) -> None: ...

    async def send_to_queue_managers(self, queue_id: int, event: str, payload: dict) -> None: ...


class EventNotifier:
    def __init__(self, transport: Transport):
        self.transport = transport

    async def notify_ticket_owner(self, user_id: int, event_name: str, payload: dict):
        try:
            await self.transport.send_to_user(user_id, event_name, payload)
        except Exception:
            logger.warning("Dropped %s for user %s", event_name, user_id, exc_info=True)

    async def notify_queue_viewers(self, queue_id: int, event_name: str, payload: dict):
        try:
            await self.transport.send_to_queue(queue_id, event_name, payload)
        except Exception:
            logger.warning("Dropped %s for viewers of queue %s", event_name, queue_id, exc_info=True)

    async def notify_queue_managers(self, queue_id: int, event_name: str, payload: dict):
        try:
            await self.transport.send_to_queue_managers(queue_id, event_name, payload)
        except Exception:
            logger.warning("Dropped %s for managers of queue %s", event_name, queue_id, exc_info=True)

    async def dispatch(self, event: LedgerEvent):
        """Send one ledger event to every audience it concerns."""
        if event.name != QUEUE_UPDATED and event.user_id is not None:
            await self.notify_ticket_owner(event.user_id, event.name, event.payload)
        await self.notify_queue_viewers(event.queue_id, event.name, event.payload)
        await self.notify_queue_managers(event.queue_id, event.name, event.payload)

