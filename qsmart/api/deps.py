# qsmart/api/deps.py
from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from qsmart.api.endpoints.realtime import manager
from qsmart.database import get_db
from qsmart.ledger import QueueLedger
from qsmart.notifier import EventNotifier

notifier = EventNotifier(manager)


def get_notifier() -> EventNotifier:
    return notifier


def get_ledger(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    event_notifier: EventNotifier = Depends(get_notifier),
) -> QueueLedger:
    """Ledger whose events are fanned out after the response is sent."""

    def publish(event):
        background_tasks.add_task(event_notifier.dispatch, event)

    return QueueLedger(db, publish=publish)
