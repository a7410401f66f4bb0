# tests/test_notifier.py
import asyncio
import logging

from qsmart.ledger import QUEUE_UPDATED, TICKET_CALLED, LedgerEvent
from qsmart.notifier import EventNotifier


class BrokenTransport:
    """Loses the owner's connection; queue channels still work."""

    def __init__(self):
        self.sent = []

    async def send_to_user(self, user_id, event, payload):
        raise ConnectionError("client went away")

    async def send_to_queue(self, queue_id, event, payload):
        self.sent.append(("queue", queue_id, event, payload))

    async def send_to_queue_managers(self, queue_id, event, payload):
        self.sent.append(("managers", queue_id, event, payload))


def test_ticket_event_reaches_owner_viewers_and_managers(transport):
    event = LedgerEvent(name=TICKET_CALLED, queue_id=3, payload={"id": 9}, user_id=42)

    asyncio.run(EventNotifier(transport).dispatch(event))

    assert transport.sent == [
        ("user", 42, TICKET_CALLED, {"id": 9}),
        ("queue", 3, TICKET_CALLED, {"id": 9}),
        ("managers", 3, TICKET_CALLED, {"id": 9}),
    ]


def test_queue_event_skips_owner(transport):
    event = LedgerEvent(name=QUEUE_UPDATED, queue_id=3, payload={"id": 3})

    asyncio.run(EventNotifier(transport).dispatch(event))

    assert [scope for scope, *_ in transport.sent] == ["queue", "managers"]


def test_transport_failure_is_logged_not_raised(caplog):
    transport = BrokenTransport()
    event = LedgerEvent(name=TICKET_CALLED, queue_id=3, payload={}, user_id=42)

    with caplog.at_level(logging.WARNING, logger="qsmart.notifier"):
        asyncio.run(EventNotifier(transport).dispatch(event))

    assert "Dropped ticket-called for user 42" in caplog.text
    assert [scope for scope, *_ in transport.sent] == ["queue", "managers"]
