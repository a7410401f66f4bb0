from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from qsmart import auth, crud, errors, schemas
from qsmart.api.deps import get_ledger
from qsmart.database import get_db
from qsmart.ledger import QueueLedger
from qsmart.models import ACTIVE_STATUSES, Ticket, TicketStatus, User

router = APIRouter()


def live_ticket(ledger: QueueLedger, ticket: Ticket) -> schemas.Ticket:
    """Ticket as stored, with position and wait recomputed while it waits."""
    data = schemas.Ticket.model_validate(ticket)
    if ticket.status != TicketStatus.waiting:
        return data
    placement = ledger.placement(ticket)
    return data.model_copy(
        update={"position": placement.position, "estimated_wait_time": placement.estimated_wait_time}
    )


@router.get("/my-tickets", response_model=List[schemas.Ticket])
def get_my_tickets(
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_current_user),
):
    tickets = crud.get_user_tickets(db, [current_user.id], ACTIVE_STATUSES)
    return [live_ticket(ledger, ticket) for ticket in tickets]


@router.get("/my-ticket", response_model=schemas.MyTicket)
def get_my_ticket(
    queue_id: int = Query(...),
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_current_user),
):
    ticket = crud.get_user_ticket_for_queue(db, current_user.id, queue_id)
    if not ticket:
        raise errors.TicketNotFound("No active ticket found for this queue")
    return schemas.MyTicket(ticket=live_ticket(ledger, ticket), queue=schemas.Queue.model_validate(ticket.queue))


@router.get("/queue/{queue_id}", response_model=List[schemas.Ticket])
def get_queue_tickets(
    queue_id: int,
    status: Optional[TicketStatus] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_manager_user),
):
    queue = crud.find_queue(db, queue_id)
    if not queue:
        raise errors.QueueNotFound()
    if not auth.can_manage_queue(queue, current_user):
        raise errors.Unauthorized("Access denied to queue tickets")

    statuses = [status] if status else None
    tickets = crud.find_tickets_by_queue(db, queue_id, statuses=statuses, limit=limit)
    return [live_ticket(ledger, ticket) for ticket in tickets]


@router.patch("/{ticket_id}/status", response_model=schemas.Ticket)
def update_ticket_status(
    ticket_id: int,
    status_update: schemas.TicketUpdateStatus,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_manager_user),
):
    return ledger.update_status(ticket_id, current_user, status_update.status)


@router.patch("/{ticket_id}/cancel", response_model=schemas.Ticket)
def cancel_ticket(
    ticket_id: int,
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_current_user),
):
    return ledger.cancel(ticket_id, current_user)


@router.get("/{ticket_id}", response_model=schemas.Ticket)
def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_current_user),
):
    ticket = crud.find_ticket(db, ticket_id)
    if not ticket:
        raise errors.TicketNotFound()
    if ticket.user_id != current_user.id and not auth.can_manage_queue(ticket.queue, current_user):
        raise errors.Unauthorized("Access denied to view ticket")
    return live_ticket(ledger, ticket)
