import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ..models.models import TicketPriority, TicketStage
from .common import EMAIL_RE, strip_to_none


class CustomerBase(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email", "phone", "company", "notes", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        return strip_to_none(v)

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        if v is not None and not EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("name")
    @classmethod
    def name_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Name is required")
        return v


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email", "phone", "company", "notes", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        return strip_to_none(v)

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        if v is not None and not EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class CustomerResponse(CustomerBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CustomerListItem(CustomerResponse):
    ticket_count: int = 0


class UserBrief(BaseModel):
    id: uuid.UUID
    name: str
    email: str

    class Config:
        from_attributes = True


class NoteCreate(BaseModel):
    content: str


class NoteResponse(BaseModel):
    id: uuid.UUID
    content: str
    ticket_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerTicketSummary(BaseModel):
    id: uuid.UUID
    title: str
    stage: TicketStage
    priority: TicketPriority
    due_date: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerDetailResponse(CustomerResponse):
    tickets: List[CustomerTicketSummary] = []
    customer_notes: List[NoteResponse] = []


class CustomerStats(BaseModel):
    total: int
    with_tickets: int
    without_tickets: int
    recently_added: int


class ImportedCustomer(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    company: Optional[str] = None


class ImportResultResponse(BaseModel):
    success: bool
    imported: int
    failed: int
    errors: List[str]
    customers: List[ImportedCustomer]
    message: str
