from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from qsmart import auth, crud, errors, schemas
from qsmart.api.deps import get_ledger
from qsmart.database import get_db
from qsmart.ledger import QueueLedger
from qsmart.models import Queue, Role, ServiceCategory, User

router = APIRouter()


def with_stats(db: Session, queue: Queue) -> schemas.QueueWithStats:
    data = schemas.Queue.model_validate(queue).model_dump()
    return schemas.QueueWithStats(**data, stats=crud.get_queue_stats(db, queue.id))


@router.get("/", response_model=List[schemas.QueueWithStats])
def get_queues(
    service_type_id: Optional[int] = Query(None),
    category: Optional[ServiceCategory] = Query(None),
    is_active: bool = Query(True),
    search: str = Query("", description="Fuzzy match on the queue name"),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    # Teachers only see the queues they run
    admin_id = current_user.id if current_user.role == Role.teacher else None
    queues = crud.get_queues(
        db,
        admin_id=admin_id,
        service_type_id=service_type_id,
        category=category,
        is_active=is_active,
        search=search,
    )
    return [with_stats(db, queue) for queue in queues]


@router.get("/mine", response_model=List[schemas.QueueWithStats])
def get_my_queues(
    is_active: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.require_roles(Role.teacher)),
):
    queues = crud.get_queues(db, admin_id=current_user.id, is_active=is_active)
    return [with_stats(db, queue) for queue in queues]


@router.get("/service-types/options", response_model=List[schemas.ServiceType])
def get_service_type_options(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    return crud.get_active_service_types(db)


@router.post("/", response_model=schemas.Queue, status_code=status.HTTP_201_CREATED)
def create_queue(
    queue_in: schemas.QueueCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_manager_user),
):
    service_type = crud.resolve_service_type(db, queue_in.service_type, current_user.id)
    if service_type is None:
        raise errors.PreconditionFailed("ServiceType id not found")
    return crud.create_queue(db, queue_in, service_type.id, current_user.id)


@router.get("/{queue_id}", response_model=schemas.QueueWithStats)
def get_queue(
    queue_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    queue = crud.find_queue(db, queue_id)
    if not queue:
        raise errors.QueueNotFound()
    return with_stats(db, queue)


@router.put("/{queue_id}", response_model=schemas.Queue)
def update_queue(
    queue_id: int,
    changes: schemas.QueueUpdate,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_manager_user),
):
    return ledger.update_queue(queue_id, current_user, changes)


@router.delete("/{queue_id}", response_model=schemas.QueueRemoved)
def delete_queue(
    queue_id: int,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_manager_user),
):
    deleted = ledger.remove_queue(queue_id, current_user)
    return schemas.QueueRemoved(id=queue_id, deleted=deleted, deactivated=not deleted)


@router.post("/{queue_id}/join", response_model=schemas.Ticket, status_code=status.HTTP_201_CREATED)
def join_queue(
    queue_id: int,
    join_in: Optional[schemas.JoinRequest] = None,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_current_user),
):
    student_info = join_in.student_info if join_in else None
    return ledger.join(queue_id, current_user, student_info=student_info)


@router.post("/{queue_id}/call-next", response_model=schemas.Ticket)
def call_next(
    queue_id: int,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_manager_user),
):
    return ledger.call_next(queue_id, current_user)
