from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from qsmart import auth, crud, errors, schemas
from qsmart.api.deps import get_ledger
from qsmart.api.endpoints.tickets import live_ticket
from qsmart.database import get_db
from qsmart.ledger import QueueLedger
from qsmart.models import Role, User

router = APIRouter()


@router.get("/my-children", response_model=List[schemas.Child])
def get_my_children(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_parent_user),
):
    return crud.get_children(db, current_user.id)


@router.post("/children", response_model=schemas.Child, status_code=status.HTTP_201_CREATED)
def add_child(
    link: schemas.ChildLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_parent_user),
):
    student = crud.get_user_by_email(db, link.email)
    if not student or student.role != Role.student:
        raise HTTPException(status_code=404, detail="Student account not found")
    return crud.link_child(db, current_user.id, student)


@router.get("/family-tickets", response_model=schemas.FamilyTickets)
def get_family_tickets(
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_parent_user),
):
    student_ids = [child.student_id for child in crud.get_children(db, current_user.id)]
    if not student_ids:
        return schemas.FamilyTickets(tickets=[])
    tickets = crud.get_user_tickets(db, student_ids)
    return schemas.FamilyTickets(tickets=[live_ticket(ledger, ticket) for ticket in tickets])


@router.post(
    "/children/{child_id}/join-queue/{queue_id}",
    response_model=schemas.Ticket,
    status_code=status.HTTP_201_CREATED,
)
def join_queue_for_child(
    child_id: int,
    queue_id: int,
    db: Session = Depends(get_db),
    ledger: QueueLedger = Depends(get_ledger),
    current_user: User = Depends(auth.get_parent_user),
):
    child = crud.get_child(db, current_user.id, child_id)
    if not child:
        raise errors.ChildNotLinked()

    # Snapshot of what the parent's record says about the child right now
    student_info = schemas.StudentInfo(
        name=child.name,
        grade=child.grade,
        student_id=child.student_number,
    )
    return ledger.join(queue_id, child.student, student_info=student_info, joined_by=current_user)
