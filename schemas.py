from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictInt, field_validator

from models import Equipment, RequestStatus, UserRole


class SignupData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    role: UserRole = UserRole.student


class LoginData(BaseModel):
    email: EmailStr
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=1)


class UserRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserRead


class EquipmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    condition: str = "Good"
    quantity: int = Field(default=1, ge=1)
    availability: bool = True


class EquipmentUpdate(BaseModel):
    """
    Allow-list of admin-editable equipment fields.
    Server-managed fields (id, timestamps) and unknown keys are dropped;
    blanks and nulls mean "leave unchanged".
    """

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    availability: Optional[bool] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and value.strip() in ("", "undefined", "null"):
            return None
        return value


class EquipmentPage(BaseModel):
    items: List[Equipment]
    total_count: int
    current_page: int
    total_pages: int


class RequestCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Parsed by the admission rules so a bad id is reported as invalid input.
    equipment_id: Union[StrictInt, str]
    purpose: Optional[str] = None
    requested_date: date
    due_date: date


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    notes: Optional[str] = None
    approved_by: Optional[int] = None


class ReturnUpdate(BaseModel):
    status: Optional[RequestStatus] = None
    notes: Optional[str] = None


class RequestRead(BaseModel):
    id: int
    user_id: int
    equipment_id: int
    purpose: Optional[str] = None
    status: RequestStatus
    requested_date: date
    due_date: date
    returned_date: Optional[date] = None
    approved_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    equipment: Optional[Equipment] = None
    user: Optional[UserSummary] = None


class RequestPage(BaseModel):
    items: List[RequestRead]
    total_count: int
    current_page: int
    total_pages: int


class StatusCount(BaseModel):
    status: RequestStatus
    count: int


class EquipmentUsage(BaseModel):
    equipment_id: int
    borrow_count: int
    equipment_name: Optional[str] = None
    equipment_category: Optional[str] = None


class UserActivity(BaseModel):
    user_id: int
    request_count: int
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class AnalyticsReport(BaseModel):
    status_distribution: List[StatusCount]
    popular_equipment: List[EquipmentUsage]
    active_users: List[UserActivity]


class MessageResponse(BaseModel):
    message: str
