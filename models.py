from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class UserRole(str, Enum):
    student = "student"
    staff = "staff"
    admin = "admin"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Rows in these states hold a unit of the equipment for their date range.
ACTIVE_STATUSES = (RequestStatus.PENDING, RequestStatus.APPROVED)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: UserRole = UserRole.student


class Equipment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    name: str = Field(index=True)
    category: str = Field(index=True)
    condition: str = "Good"
    quantity: int = 1
    availability: bool = True

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BorrowRequest(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    equipment_id: int = Field(foreign_key="equipment.id", index=True)

    purpose: Optional[str] = None
    status: RequestStatus = Field(default=RequestStatus.PENDING, index=True)
    requested_date: date
    due_date: date
    returned_date: Optional[date] = None
    approved_by: Optional[int] = Field(default=None, foreign_key="user.id")
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
