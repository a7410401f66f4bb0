from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from qsmart.models import Role, ServiceCategory, TicketStatus


class StudentInfo(BaseModel):
    name: Optional[str] = None
    grade: Optional[str] = None
    student_id: Optional[str] = None


class QueueSettings(BaseModel):
    max_queue_length: int = Field(50, ge=1)
    meeting_duration: int = Field(10, ge=1)
    auto_call_next: bool = False


class QueueSettingsUpdate(BaseModel):
    max_queue_length: Optional[int] = Field(None, ge=1)
    meeting_duration: Optional[int] = Field(None, ge=1)
    auto_call_next: Optional[bool] = None


# ---- Service types ----

class ServiceType(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: ServiceCategory
    default_duration: int
    icon: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ---- Queues ----

class QueueCreate(BaseModel):
    name: str
    location: str
    # id of an existing service type, or a name (created on demand)
    service_type: str
    description: Optional[str] = None
    average_wait_time: Optional[int] = Field(None, ge=0)
    settings: QueueSettings = QueueSettings()


class QueueUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    service_type_id: Optional[int] = None
    average_wait_time: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    settings: Optional[QueueSettingsUpdate] = None


class Queue(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    location: str
    service_type_id: int
    admin_id: int
    average_wait_time: int
    current_ticket: int
    is_active: bool
    settings: QueueSettings
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class QueueStats(BaseModel):
    waiting: int = 0
    called: int = 0
    active: int = 0
    completed_today: int = 0


class QueueWithStats(Queue):
    stats: QueueStats


class QueueRemoved(BaseModel):
    id: int
    deleted: bool
    deactivated: bool


# ---- Tickets ----

class JoinRequest(BaseModel):
    student_info: Optional[StudentInfo] = None


class Ticket(BaseModel):
    id: int
    ticket_number: int
    queue_id: int
    user_id: int
    status: TicketStatus
    position: int
    estimated_wait_time: int
    created_at: datetime
    called_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    student_info: Optional[StudentInfo] = None

    model_config = ConfigDict(from_attributes=True)


class TicketUpdateStatus(BaseModel):
    status: TicketStatus


class MyTicket(BaseModel):
    ticket: Ticket
    queue: Queue


# ---- Users ----

class User(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    phone: Optional[str] = None
    grade: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str


class ChildLink(BaseModel):
    email: str


class Child(BaseModel):
    id: int
    student_id: int
    name: str
    grade: Optional[str] = None
    student_number: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FamilyTickets(BaseModel):
    tickets: List[Ticket]
