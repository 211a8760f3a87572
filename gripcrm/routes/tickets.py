import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.security import require_verified_user
from ..models.models import TicketPriority, TicketStage, User
from ..schemas.common import Page
from ..schemas.customers import NoteCreate, NoteResponse
from ..schemas.tickets import (
    AssignRequest,
    StageMoveRequest,
    TicketCreate,
    TicketDetailResponse,
    TicketResponse,
    TicketStats,
    TicketUpdate,
)
from ..services.tickets import TicketService
from .deps import get_ticket_service


router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("", response_model=Page[TicketResponse])
def list_tickets(
    stage: Optional[TicketStage] = None,
    priority: Optional[TicketPriority] = None,
    customer_id: Optional[uuid.UUID] = None,
    assigned_user_id: Optional[uuid.UUID] = None,
    overdue: bool = False,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    svc: TicketService = Depends(get_ticket_service),
    _: User = Depends(require_verified_user),
):
    return svc.list_tickets(
        stage=stage,
        priority=priority,
        customer_id=customer_id,
        assigned_user_id=assigned_user_id,
        overdue=overdue,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=TicketStats)
def ticket_stats(svc: TicketService = Depends(get_ticket_service), _: User = Depends(require_verified_user)):
    return svc.stats()


@router.get("/by-stage", response_model=Dict[str, int])
def tickets_by_stage(svc: TicketService = Depends(get_ticket_service), _: User = Depends(require_verified_user)):
    return svc.count_by_stage()


@router.get("/overdue", response_model=List[TicketResponse])
def overdue_tickets(svc: TicketService = Depends(get_ticket_service), _: User = Depends(require_verified_user)):
    return svc.overdue_tickets()


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreate,
    svc: TicketService = Depends(get_ticket_service),
    user: User = Depends(require_verified_user),
):
    return svc.create_ticket(payload.model_dump(exclude={"stage"}), actor_id=user.id)


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
def get_ticket(
    ticket_id: uuid.UUID,
    svc: TicketService = Depends(get_ticket_service),
    _: User = Depends(require_verified_user),
):
    return svc.get_ticket(ticket_id)


@router.put("/{ticket_id}", response_model=TicketResponse)
def update_ticket(
    ticket_id: uuid.UUID,
    payload: TicketUpdate,
    svc: TicketService = Depends(get_ticket_service),
    user: User = Depends(require_verified_user),
):
    return svc.update_ticket(ticket_id, payload.model_dump(exclude_unset=True), actor_id=user.id)


@router.patch("/{ticket_id}/stage", response_model=TicketResponse)
def move_ticket_stage(
    ticket_id: uuid.UUID,
    payload: StageMoveRequest,
    svc: TicketService = Depends(get_ticket_service),
    user: User = Depends(require_verified_user),
):
    return svc.move_stage(ticket_id, payload.stage, actor_id=user.id)


@router.patch("/{ticket_id}/assign", response_model=TicketResponse)
def assign_ticket(
    ticket_id: uuid.UUID,
    payload: AssignRequest,
    svc: TicketService = Depends(get_ticket_service),
    user: User = Depends(require_verified_user),
):
    return svc.assign(ticket_id, payload.assigned_user_id, actor_id=user.id)


@router.post("/{ticket_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def add_ticket_note(
    ticket_id: uuid.UUID,
    payload: NoteCreate,
    svc: TicketService = Depends(get_ticket_service),
    user: User = Depends(require_verified_user),
):
    return svc.add_note(ticket_id, payload.content, actor_id=user.id)
