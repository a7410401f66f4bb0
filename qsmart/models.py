import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from qsmart.database import Base


class Role(str, enum.Enum):
    student = "student"
    parent = "parent"
    teacher = "teacher"
    admin = "admin"


class TicketStatus(str, enum.Enum):
    waiting = "waiting"
    called = "called"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


class ServiceCategory(str, enum.Enum):
    academic = "academic"
    administrative = "administrative"
    support = "support"
    extracurricular = "extracurricular"
    other = "other"


# Statuses that count as "holding a place" in a queue
ACTIVE_STATUSES = (TicketStatus.waiting, TicketStatus.called)


def _values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(Role), nullable=False)
    phone = Column(String(30), nullable=True)
    student_number = Column(String(50), nullable=True)
    grade = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    children = relationship("Child", back_populates="parent", foreign_keys="Child.parent_id")
    tickets = relationship("Ticket", back_populates="user", foreign_keys="Ticket.user_id")
    queues = relationship("Queue", back_populates="admin")


class Child(Base):
    __tablename__ = "children"

    id = Column(Integer, primary_key=True, index=True)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(100), nullable=False)
    grade = Column(String(20), nullable=True)
    student_number = Column(String(50), nullable=True)

    __table_args__ = (UniqueConstraint("parent_id", "student_id", name="uix_parent_student"),)

    parent = relationship("User", back_populates="children", foreign_keys=[parent_id])
    student = relationship("User", foreign_keys=[student_id])


class ServiceType(Base):
    __tablename__ = "service_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(Enum(ServiceCategory), nullable=False, default=ServiceCategory.other)
    default_duration = Column(Integer, nullable=False, default=10)
    icon = Column(String(16), default="📋")
    is_active = Column(Boolean, default=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (CheckConstraint("default_duration >= 1", name="ck_service_type_duration"),)

    queues = relationship("Queue", back_populates="service_type")


class Queue(Base):
    __tablename__ = "queues"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(100), nullable=False)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    average_wait_time = Column(Integer, nullable=False, default=10)
    current_ticket = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    # settings
    max_queue_length = Column(Integer, nullable=False, default=50)
    meeting_duration = Column(Integer, nullable=False, default=10)
    auto_call_next = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("max_queue_length >= 1", name="ck_queue_max_length"),
        CheckConstraint("meeting_duration >= 1", name="ck_queue_meeting_duration"),
    )

    admin = relationship("User", back_populates="queues")
    service_type = relationship("ServiceType", back_populates="queues")
    tickets = relationship("Ticket", back_populates="queue", cascade="all, delete")

    @property
    def settings(self) -> dict:
        return {
            "max_queue_length": self.max_queue_length,
            "meeting_duration": self.meeting_duration,
            "auto_call_next": self.auto_call_next,
        }


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(Integer, nullable=False)
    queue_id = Column(Integer, ForeignKey("queues.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(
        Enum(TicketStatus, values_callable=_values, native_enum=False, length=20),
        nullable=False,
        default=TicketStatus.waiting,
    )
    position = Column(Integer, nullable=False)
    estimated_wait_time = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    called_at = Column(DateTime, nullable=True, default=None)
    completed_at = Column(DateTime, nullable=True, default=None)

    # studentInfo snapshot, copied at join time
    student_name = Column(String(100), nullable=True)
    student_grade = Column(String(20), nullable=True)
    student_number = Column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("queue_id", "ticket_number", name="uix_queue_ticket_number"),
    )

    queue = relationship("Queue", back_populates="tickets")
    user = relationship("User", back_populates="tickets", foreign_keys=[user_id])
    joined_by = relationship("User", foreign_keys=[joined_by_id])

    @property
    def student_info(self):
        if not (self.student_name or self.student_grade or self.student_number):
            return None
        return {
            "name": self.student_name,
            "grade": self.student_grade,
            "student_id": self.student_number,
        }
