from datetime import datetime, time
from typing import Iterable, List, Optional

import pytz
from rapidfuzz import fuzz
from sqlalchemy import func
from sqlalchemy.orm import Session

from qsmart import auth, models, schemas
from qsmart.config import settings
from qsmart.models import ACTIVE_STATUSES, Queue, Ticket, TicketStatus


def school_tz():
    return pytz.timezone(settings.TIMEZONE)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(pytz.utc).replace(tzinfo=None)


def start_of_today() -> datetime:
    """Local midnight of the school's timezone, as naive UTC."""
    tz = school_tz()
    today = datetime.now(tz).date()
    midnight = tz.localize(datetime.combine(today, time.min))
    return midnight.astimezone(pytz.utc).replace(tzinfo=None)


# --- PERSISTENCE PRIMITIVES (used by the ledger) ---

def find_queue(db: Session, queue_id: int, lock: bool = False) -> Optional[Queue]:
    query = db.query(Queue).filter(Queue.id == queue_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def find_ticket(db: Session, ticket_id: int, lock: bool = False) -> Optional[Ticket]:
    query = db.query(Ticket).filter(Ticket.id == ticket_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def find_tickets_by_queue(
    db: Session,
    queue_id: int,
    statuses: Optional[Iterable[TicketStatus]] = None,
    limit: Optional[int] = None,
) -> List[Ticket]:
    query = db.query(Ticket).filter(Ticket.queue_id == queue_id)
    if statuses is not None:
        query = query.filter(Ticket.status.in_(list(statuses)))
    query = query.order_by(Ticket.ticket_number.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def find_highest_ticket_number(db: Session, queue_id: int) -> int:
    highest = db.query(func.max(Ticket.ticket_number)).filter(Ticket.queue_id == queue_id).scalar()
    return highest or 0


def find_waiting_numbers(db: Session, queue_id: int) -> List[int]:
    rows = (
        db.query(Ticket.ticket_number)
        .filter(Ticket.queue_id == queue_id, Ticket.status == TicketStatus.waiting)
        .order_by(Ticket.ticket_number.asc())
        .all()
    )
    return [number for (number,) in rows]


def find_next_waiting(db: Session, queue_id: int) -> Optional[Ticket]:
    return (
        db.query(Ticket)
        .filter(Ticket.queue_id == queue_id, Ticket.status == TicketStatus.waiting)
        .order_by(Ticket.ticket_number.asc())
        .first()
    )


def count_tickets(db: Session, queue_id: int, statuses: Iterable[TicketStatus]) -> int:
    return (
        db.query(func.count(Ticket.id))
        .filter(Ticket.queue_id == queue_id, Ticket.status.in_(list(statuses)))
        .scalar()
    )


def find_active_ticket(db: Session, queue_id: int, user_id: int) -> Optional[Ticket]:
    return (
        db.query(Ticket)
        .filter(
            Ticket.queue_id == queue_id,
            Ticket.user_id == user_id,
            Ticket.status.in_(list(ACTIVE_STATUSES)),
        )
        .first()
    )


def save(db: Session, entity):
    db.add(entity)
    db.flush()
    return entity


def delete(db: Session, entity):
    db.delete(entity)
    db.flush()


# --- QUEUES ---

def resolve_service_type(db: Session, value: str, created_by_id: int) -> Optional[models.ServiceType]:
    """Look a service type up by id, or by name (case-insensitive).

    An unknown name creates the service type; an unknown id returns None.
    """
    if value.isdigit():
        return db.query(models.ServiceType).filter(models.ServiceType.id == int(value)).first()

    service_type = (
        db.query(models.ServiceType)
        .filter(func.lower(models.ServiceType.name) == value.strip().lower())
        .first()
    )
    if service_type is None:
        service_type = models.ServiceType(name=value.strip(), created_by_id=created_by_id)
        db.add(service_type)
        db.flush()
    return service_type


def create_queue(db: Session, queue_in: schemas.QueueCreate, service_type_id: int, admin_id: int) -> Queue:
    average_wait_time = queue_in.average_wait_time
    if average_wait_time is None:
        average_wait_time = settings.DEFAULT_AVERAGE_WAIT_TIME

    db_queue = Queue(
        name=queue_in.name,
        description=queue_in.description,
        location=queue_in.location,
        service_type_id=service_type_id,
        admin_id=admin_id,
        average_wait_time=average_wait_time,
        max_queue_length=queue_in.settings.max_queue_length,
        meeting_duration=queue_in.settings.meeting_duration,
        auto_call_next=queue_in.settings.auto_call_next,
    )
    db.add(db_queue)
    db.commit()
    db.refresh(db_queue)
    return db_queue


def get_queues(
    db: Session,
    admin_id: Optional[int] = None,
    service_type_id: Optional[int] = None,
    category: Optional[models.ServiceCategory] = None,
    is_active: bool = True,
    search: str = "",
) -> List[Queue]:
    query = db.query(Queue).filter(Queue.is_active == is_active)
    if admin_id is not None:
        query = query.filter(Queue.admin_id == admin_id)
    if service_type_id is not None:
        query = query.filter(Queue.service_type_id == service_type_id)
    if category is not None:
        query = query.join(models.ServiceType).filter(models.ServiceType.category == category)

    queues = query.order_by(Queue.created_at.desc(), Queue.id.desc()).all()
    if not search:
        return queues

    results = []
    for queue in queues:
        score = fuzz.partial_ratio(search.lower(), queue.name.lower())
        if score > 60:
            results.append((score, queue))

    results.sort(reverse=True, key=lambda x: x[0])
    return [queue for _, queue in results]


def get_queue_stats(db: Session, queue_id: int) -> schemas.QueueStats:
    waiting = count_tickets(db, queue_id, [TicketStatus.waiting])
    called = count_tickets(db, queue_id, [TicketStatus.called])
    completed_today = (
        db.query(func.count(Ticket.id))
        .filter(
            Ticket.queue_id == queue_id,
            Ticket.status == TicketStatus.completed,
            Ticket.completed_at >= start_of_today(),
        )
        .scalar()
    )
    return schemas.QueueStats(
        waiting=waiting,
        called=called,
        active=waiting + called,
        completed_today=completed_today,
    )


def find_service_type(db: Session, service_type_id: int) -> Optional[models.ServiceType]:
    return db.query(models.ServiceType).filter(models.ServiceType.id == service_type_id).first()


def get_active_service_types(db: Session) -> List[models.ServiceType]:
    return (
        db.query(models.ServiceType)
        .filter(models.ServiceType.is_active == True)  # noqa: E712
        .order_by(models.ServiceType.name)
        .all()
    )


# --- TICKETS ---

def get_user_tickets(db: Session, user_ids: Iterable[int], statuses: Optional[Iterable[TicketStatus]] = None) -> List[Ticket]:
    query = db.query(Ticket).filter(Ticket.user_id.in_(list(user_ids)))
    if statuses is not None:
        query = query.filter(Ticket.status.in_(list(statuses)))
    return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


def get_user_ticket_for_queue(db: Session, user_id: int, queue_id: int) -> Optional[Ticket]:
    return (
        db.query(Ticket)
        .filter(
            Ticket.user_id == user_id,
            Ticket.queue_id == queue_id,
            Ticket.status.in_([TicketStatus.waiting, TicketStatus.called, TicketStatus.in_progress]),
        )
        .order_by(Ticket.ticket_number.desc())
        .first()
    )


# --- USERS ---

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.strip().lower()).first()


def create_user(
    db: Session,
    name: str,
    email: str,
    password: str,
    role: models.Role,
    grade: Optional[str] = None,
    student_number: Optional[str] = None,
) -> models.User:
    db_user = models.User(
        name=name,
        email=email.strip().lower(),
        hashed_password=auth.hash_password(password),
        role=role,
        grade=grade,
        student_number=student_number,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_children(db: Session, parent_id: int) -> List[models.Child]:
    return db.query(models.Child).filter(models.Child.parent_id == parent_id).order_by(models.Child.id).all()


def get_child(db: Session, parent_id: int, student_id: int) -> Optional[models.Child]:
    return (
        db.query(models.Child)
        .filter(models.Child.parent_id == parent_id, models.Child.student_id == student_id)
        .first()
    )


def link_child(db: Session, parent_id: int, student: models.User) -> models.Child:
    child = get_child(db, parent_id, student.id)
    if child:
        return child

    child = models.Child(
        parent_id=parent_id,
        student_id=student.id,
        name=student.name,
        grade=student.grade,
        student_number=student.student_number,
    )
    db.add(child)
    db.commit()
    db.refresh(child)
    return child
