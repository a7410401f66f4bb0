"""Ticket lifecycle and queue ordering.

``QueueLedger`` is the only code that mutates a queue's ticket set. Each
operation runs under a per-queue lock, commits, and only then hands its
lifecycle events to the injected ``publish`` callable. A failed operation
rolls back and publishes nothing.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qsmart import crud, errors, schemas
from qsmart.auth import can_manage_queue
from qsmart.models import ACTIVE_STATUSES, Queue, Ticket, TicketStatus, User

logger = logging.getLogger(__name__)

TICKET_CREATED = "ticket-created"
TICKET_CALLED = "ticket-called"
TICKET_COMPLETED = "ticket-completed"
TICKET_UPDATED = "ticket-updated"
TICKET_REMOVED = "ticket-removed"
QUEUE_UPDATED = "queue-updated"

VALID_TRANSITIONS = {
    TicketStatus.waiting: {TicketStatus.called, TicketStatus.cancelled},
    TicketStatus.called: {TicketStatus.in_progress, TicketStatus.completed, TicketStatus.cancelled},
    TicketStatus.in_progress: {TicketStatus.completed, TicketStatus.cancelled},
    TicketStatus.completed: set(),
    TicketStatus.cancelled: set(),
}


@dataclass(frozen=True)
class Placement:
    position: int
    estimated_wait_time: int


@dataclass(frozen=True)
class LedgerEvent:
    name: str
    queue_id: int
    payload: dict
    # owner of the ticket; None for queue-level events
    user_id: Optional[int] = None


def recompute_position(ticket_number: int, waiting_numbers: Iterable[int], average_wait_time: int) -> Placement:
    """Live position of a waiting ticket among the queue's waiting numbers."""
    ahead = sum(1 for number in waiting_numbers if number < ticket_number)
    position = ahead + 1
    return Placement(position=position, estimated_wait_time=position * average_wait_time)


class QueueLocks:
    """One lock per queue id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def for_queue(self, queue_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(queue_id)
            if lock is None:
                lock = self._locks[queue_id] = threading.Lock()
            return lock


queue_locks = QueueLocks()


def ticket_event(name: str, ticket: Ticket) -> LedgerEvent:
    payload = schemas.Ticket.model_validate(ticket).model_dump(mode="json")
    return LedgerEvent(name=name, queue_id=ticket.queue_id, payload=payload, user_id=ticket.user_id)


class QueueLedger:
    def __init__(
        self,
        db: Session,
        publish: Optional[Callable[[LedgerEvent], None]] = None,
        clock: Optional[Callable] = None,
        locks: Optional[QueueLocks] = None,
    ):
        self.db = db
        self.publish = publish
        self.clock = clock or crud.utcnow
        self.locks = locks or queue_locks

    # --- plumbing ---

    @contextmanager
    def _storage(self):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Storage failure in queue ledger")
            raise errors.StorageError() from exc

    @contextmanager
    def _transaction(self, queue_id: int):
        with self.locks.for_queue(queue_id):
            with self._storage():
                try:
                    yield
                    self.db.commit()
                except Exception:
                    self.db.rollback()
                    raise

    def _emit(self, events: List[LedgerEvent]):
        for event in events:
            logger.debug("Emitting %s for queue %s", event.name, event.queue_id)
            if self.publish is None:
                continue
            try:
                self.publish(event)
            except Exception:
                logger.exception("Could not publish %s for queue %s", event.name, event.queue_id)

    def _load_queue(self, queue_id: int) -> Queue:
        queue = crud.find_queue(self.db, queue_id, lock=True)
        if queue is None:
            raise errors.QueueNotFound()
        return queue

    def _locate(self, ticket_id: int) -> int:
        with self._storage():
            ticket = crud.find_ticket(self.db, ticket_id)
        if ticket is None:
            raise errors.TicketNotFound()
        return ticket.queue_id

    def _load_ticket(self, ticket_id: int) -> Ticket:
        ticket = crud.find_ticket(self.db, ticket_id, lock=True)
        if ticket is None:
            raise errors.TicketNotFound()
        return ticket

    def _mark_called(self, queue: Queue, ticket: Ticket):
        ticket.status = TicketStatus.called
        if ticket.called_at is None:
            ticket.called_at = self.clock()
        queue.current_ticket = max(queue.current_ticket or 0, ticket.ticket_number)
        self.db.flush()

    def _auto_call(self, queue: Queue) -> List[LedgerEvent]:
        busy = crud.count_tickets(self.db, queue.id, [TicketStatus.called, TicketStatus.in_progress])
        if busy:
            return []
        ticket = crud.find_next_waiting(self.db, queue.id)
        if ticket is None:
            return []
        self._mark_called(queue, ticket)
        logger.info("Auto-called ticket #%s in queue %s", ticket.ticket_number, queue.id)
        return [ticket_event(TICKET_CALLED, ticket)]

    # --- operations ---

    def join(
        self,
        queue_id: int,
        requester: User,
        student_info: Optional[schemas.StudentInfo] = None,
        joined_by: Optional[User] = None,
    ) -> Ticket:
        with self._transaction(queue_id):
            queue = self._load_queue(queue_id)
            if not queue.is_active:
                raise errors.QueueInactive()
            if crud.find_active_ticket(self.db, queue.id, requester.id):
                raise errors.DuplicateActiveTicket()

            waiting = crud.count_tickets(self.db, queue.id, [TicketStatus.waiting])
            if waiting >= queue.max_queue_length:
                raise errors.QueueFull()

            position = waiting + 1
            ticket = Ticket(
                ticket_number=crud.find_highest_ticket_number(self.db, queue.id) + 1,
                queue_id=queue.id,
                user_id=requester.id,
                joined_by_id=joined_by.id if joined_by else requester.id,
                status=TicketStatus.waiting,
                position=position,
                estimated_wait_time=position * queue.average_wait_time,
                created_at=self.clock(),
            )
            if student_info is not None:
                ticket.student_name = student_info.name
                ticket.student_grade = student_info.grade
                ticket.student_number = student_info.student_id
            crud.save(self.db, ticket)
            events = [ticket_event(TICKET_CREATED, ticket)]

        logger.info("User %s joined queue %s as ticket #%s", requester.id, queue_id, ticket.ticket_number)
        self._emit(events)
        return ticket

    def call_next(self, queue_id: int, manager: User) -> Ticket:
        with self._transaction(queue_id):
            queue = self._load_queue(queue_id)
            if not can_manage_queue(queue, manager):
                raise errors.Unauthorized("You can only manage queues you administer")

            ticket = crud.find_next_waiting(self.db, queue.id)
            if ticket is None:
                raise errors.NoWaitingTickets()
            self._mark_called(queue, ticket)
            events = [ticket_event(TICKET_CALLED, ticket)]

        logger.info("Called ticket #%s in queue %s", ticket.ticket_number, queue_id)
        self._emit(events)
        return ticket

    def update_status(self, ticket_id: int, manager: User, new_status) -> Ticket:
        try:
            new_status = TicketStatus(new_status)
        except ValueError:
            raise errors.InvalidTransition(f"Unknown ticket status: {new_status}") from None
        queue_id = self._locate(ticket_id)

        with self._transaction(queue_id):
            # queue row first, then ticket: same lock order as call_next
            queue = self._load_queue(queue_id)
            ticket = self._load_ticket(ticket_id)
            if not can_manage_queue(queue, manager):
                raise errors.Unauthorized("Access denied to update ticket")

            current = ticket.status
            if new_status not in VALID_TRANSITIONS[current]:
                raise errors.InvalidTransition(
                    f"Invalid status transition from {current.value} to {new_status.value}"
                )

            events = []
            if new_status == TicketStatus.called:
                self._mark_called(queue, ticket)
                events.append(ticket_event(TICKET_UPDATED, ticket))
                events.append(ticket_event(TICKET_CALLED, ticket))
            elif new_status == TicketStatus.completed:
                ticket.status = new_status
                if ticket.completed_at is None:
                    ticket.completed_at = self.clock()
                queue.current_ticket = max(queue.current_ticket or 0, ticket.ticket_number)
                self.db.flush()
                events.append(ticket_event(TICKET_UPDATED, ticket))
                events.append(ticket_event(TICKET_COMPLETED, ticket))
                if queue.auto_call_next:
                    events.extend(self._auto_call(queue))
            else:
                ticket.status = new_status
                self.db.flush()
                events.append(ticket_event(TICKET_UPDATED, ticket))

        logger.info("Ticket %s moved from %s to %s", ticket_id, current.value, new_status.value)
        self._emit(events)
        return ticket

    def cancel(self, ticket_id: int, actor: User) -> Ticket:
        queue_id = self._locate(ticket_id)

        with self._transaction(queue_id):
            queue = self._load_queue(queue_id)
            ticket = self._load_ticket(ticket_id)
            if ticket.user_id != actor.id and not can_manage_queue(queue, actor):
                raise errors.Unauthorized("Access denied to cancel ticket")
            if ticket.status not in ACTIVE_STATUSES:
                raise errors.InvalidTransition(f"Cannot cancel a ticket that is {ticket.status.value}")

            ticket.status = TicketStatus.cancelled
            self.db.flush()
            events = [ticket_event(TICKET_UPDATED, ticket), ticket_event(TICKET_REMOVED, ticket)]

        logger.info("Ticket %s cancelled by user %s", ticket_id, actor.id)
        self._emit(events)
        return ticket

    def placement(self, ticket: Ticket, queue: Optional[Queue] = None) -> Placement:
        with self._storage():
            queue = queue or ticket.queue
            waiting = crud.find_waiting_numbers(self.db, ticket.queue_id)
        return recompute_position(ticket.ticket_number, waiting, queue.average_wait_time)

    # --- queue lifecycle ---

    def update_queue(self, queue_id: int, manager: User, changes: schemas.QueueUpdate) -> Queue:
        with self._transaction(queue_id):
            queue = self._load_queue(queue_id)
            if not can_manage_queue(queue, manager):
                raise errors.Unauthorized("You can only update queues you manage")

            fields = changes.model_dump(exclude_unset=True, exclude={"settings"})
            if fields.get("service_type_id") is not None:
                service_type = crud.find_service_type(self.db, fields["service_type_id"])
                if service_type is None or not service_type.is_active:
                    raise errors.PreconditionFailed("Invalid or inactive service type")

            for key, value in fields.items():
                if value is not None:
                    setattr(queue, key, value)
            if changes.settings is not None:
                for key, value in changes.settings.model_dump(exclude_unset=True).items():
                    if value is not None:
                        setattr(queue, key, value)
            self.db.flush()

            payload = schemas.Queue.model_validate(queue).model_dump(mode="json")
            events = [LedgerEvent(name=QUEUE_UPDATED, queue_id=queue.id, payload=payload)]

        logger.info("Queue %s updated by user %s", queue_id, manager.id)
        self._emit(events)
        return queue

    def remove_queue(self, queue_id: int, manager: User) -> bool:
        """Delete a queue, or deactivate it while tickets still hold a place.

        Returns True when the queue and its tickets were deleted.
        """
        with self._transaction(queue_id):
            queue = self._load_queue(queue_id)
            if not can_manage_queue(queue, manager):
                raise errors.Unauthorized("You can only delete queues you manage")

            if crud.count_tickets(self.db, queue.id, ACTIVE_STATUSES):
                queue.is_active = False
                self.db.flush()
                deleted = False
            else:
                crud.delete(self.db, queue)
                deleted = True
            payload = {"id": queue_id, "deleted": deleted, "deactivated": not deleted}
            events = [LedgerEvent(name=QUEUE_UPDATED, queue_id=queue_id, payload=payload)]

        logger.info("Queue %s %s by user %s", queue_id, "deleted" if deleted else "deactivated", manager.id)
        self._emit(events)
        return deleted
