import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, field_validator

from ..models.models import TicketPriority, TicketStage
from .common import strip_to_none
from .customers import NoteResponse, UserBrief


class TicketCreate(BaseModel):
    title: str
    description: str
    customer_id: uuid.UUID
    assigned_user_id: Optional[uuid.UUID] = None
    priority: TicketPriority = TicketPriority.MEDIUM
    due_date: Optional[datetime] = None
    # Accepted for compatibility; new tickets always start in "new"
    stage: Optional[TicketStage] = None

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class TicketUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    customer_id: Optional[uuid.UUID] = None
    assigned_user_id: Optional[uuid.UUID] = None
    stage: Optional[TicketStage] = None
    priority: Optional[TicketPriority] = None
    due_date: Optional[datetime] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        return strip_to_none(v)


class StageMoveRequest(BaseModel):
    stage: TicketStage


class AssignRequest(BaseModel):
    assigned_user_id: uuid.UUID


class CustomerBrief(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    company: Optional[str] = None

    class Config:
        from_attributes = True


class TicketResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    customer_id: uuid.UUID
    assigned_user_id: Optional[uuid.UUID] = None
    stage: TicketStage
    priority: TicketPriority
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    customer: Optional[CustomerBrief] = None
    assigned_user: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class TicketDetailResponse(TicketResponse):
    notes: List[NoteResponse] = []


class TicketStats(BaseModel):
    total: int
    by_stage: Dict[str, int]
    by_priority: Dict[str, int]
    overdue: int
    completed_this_month: int
