"""
Ticket lifecycle: creation, stage transitions, assignment and notes.

``completed_at`` is owned here. Every write that can change a ticket's
stage goes through ``apply_stage`` so that ``completed_at`` is set exactly
while the ticket sits in ``completed``.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy import and_, func
from sqlalchemy.orm import Session, joinedload, selectinload

from ..models.models import (
    ActivityType,
    Customer,
    Note,
    Ticket,
    TicketPriority,
    TicketStage,
    User,
    ensure_utc,
)
from .activity import ActivityRecorder, BoundActivityRecorder
from .errors import NotFoundError, ReferenceNotFoundError, ValidationError
from .notifications import Notifier
from .pagination import clamp_page, page_envelope


logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("title", "description", "customer_id", "assigned_user_id", "priority", "due_date")


def apply_stage(ticket: Ticket, new_stage: TicketStage, now: Optional[datetime] = None) -> TicketStage:
    """Move ``ticket`` to ``new_stage`` and keep ``completed_at`` in step. Returns the old stage."""
    new_stage = TicketStage(new_stage)
    old_stage = ticket.stage
    ticket.stage = new_stage
    if new_stage == TicketStage.COMPLETED and old_stage != TicketStage.COMPLETED:
        ticket.completed_at = now or datetime.now(timezone.utc)
    elif new_stage != TicketStage.COMPLETED:
        ticket.completed_at = None
    return old_stage


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def overdue_clause(now: Optional[datetime] = None):
    now = now or datetime.now(timezone.utc)
    return and_(Ticket.due_date.isnot(None), Ticket.due_date < now, Ticket.stage != TicketStage.COMPLETED)


class TicketService:
    def __init__(
        self,
        db: Session,
        activity: Optional[Union[ActivityRecorder, BoundActivityRecorder]] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.activity = activity
        self.notifier = notifier

    def _record(self, actor_id, activity_type: ActivityType, description: str, metadata: Dict[str, Any]) -> None:
        if self.activity is not None and actor_id is not None:
            self.activity.record(actor_id, activity_type, description, metadata)

    def _require_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = self.db.get(Customer, customer_id)
        if not customer:
            raise ReferenceNotFoundError("Customer not found")
        return customer

    def _require_user(self, user_id: uuid.UUID) -> User:
        user = self.db.get(User, user_id)
        if not user:
            raise ReferenceNotFoundError("Assigned user not found")
        return user

    def _notify(self, method: str, *args) -> None:
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, method)(*args)
        except Exception as e:
            logger.warning("ticket_notification_failed", method=method, error=str(e))

    def create_ticket(self, data: Dict[str, Any], actor_id: Optional[uuid.UUID] = None) -> Ticket:
        customer_id = data.get("customer_id")
        if customer_id is None:
            raise ValidationError("Customer is required")
        self._require_customer(customer_id)
        if data.get("assigned_user_id"):
            self._require_user(data["assigned_user_id"])
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required")

        ticket = Ticket(
            title=title,
            description=data.get("description") or "",
            customer_id=customer_id,
            assigned_user_id=data.get("assigned_user_id"),
            priority=TicketPriority(data.get("priority") or TicketPriority.MEDIUM),
            due_date=ensure_utc(data.get("due_date")),
            # Caller-supplied stage is ignored
            stage=TicketStage.NEW,
            completed_at=None,
        )
        self.db.add(ticket)
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.CREATE_TICKET,
            f"Created ticket: {ticket.title}",
            {"ticket_id": ticket.id, "customer_id": ticket.customer_id},
        )
        return self.get_ticket(ticket.id)

    def update_ticket(self, id: uuid.UUID, data: Dict[str, Any], actor_id: Optional[uuid.UUID] = None) -> Ticket:
        ticket = self.db.get(Ticket, id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        if data.get("customer_id") and data["customer_id"] != ticket.customer_id:
            self._require_customer(data["customer_id"])
        if data.get("assigned_user_id") and data["assigned_user_id"] != ticket.assigned_user_id:
            self._require_user(data["assigned_user_id"])
        if "title" in data and not (data["title"] or "").strip():
            raise ValidationError("Title is required")
        if "description" in data and not (data["description"] or "").strip():
            raise ValidationError("Description is required")

        for key in UPDATABLE_FIELDS:
            if key not in data:
                continue
            if key == "customer_id" and data[key] is None:
                continue
            value = data[key]
            if key == "priority":
                if value is None:
                    continue
                value = TicketPriority(value)
            elif key == "due_date":
                value = ensure_utc(value)
            setattr(ticket, key, value)
        old_stage = ticket.stage
        if data.get("stage") is not None:
            apply_stage(ticket, data["stage"])
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.UPDATE_TICKET,
            f"Updated ticket: {ticket.title}",
            {"ticket_id": ticket.id, "fields": sorted(data.keys())},
        )
        ticket = self.get_ticket(ticket.id)
        if old_stage != TicketStage.COMPLETED and ticket.stage == TicketStage.COMPLETED:
            self._notify_completed(ticket)
        return ticket

    def get_ticket(self, id: uuid.UUID) -> Ticket:
        ticket = (
            self.db.query(Ticket)
            .options(
                joinedload(Ticket.customer),
                joinedload(Ticket.assigned_user),
                selectinload(Ticket.notes).joinedload(Note.user),
            )
            .filter(Ticket.id == id)
            .first()
        )
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    def list_tickets(
        self,
        stage: Optional[TicketStage] = None,
        priority: Optional[TicketPriority] = None,
        customer_id: Optional[uuid.UUID] = None,
        assigned_user_id: Optional[uuid.UUID] = None,
        overdue: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        limit, offset = clamp_page(limit, offset)
        query = self.db.query(Ticket)
        if stage:
            query = query.filter(Ticket.stage == TicketStage(stage))
        if priority:
            query = query.filter(Ticket.priority == TicketPriority(priority))
        if customer_id:
            query = query.filter(Ticket.customer_id == customer_id)
        if assigned_user_id:
            query = query.filter(Ticket.assigned_user_id == assigned_user_id)
        if overdue:
            query = query.filter(overdue_clause())
        total = query.count()
        tickets = (
            query.options(joinedload(Ticket.customer), joinedload(Ticket.assigned_user))
            .order_by(Ticket.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return page_envelope(tickets, total, limit, offset)

    def move_stage(self, id: uuid.UUID, new_stage: TicketStage, actor_id: Optional[uuid.UUID] = None) -> Ticket:
        ticket = self.get_ticket(id)
        old_stage = apply_stage(ticket, new_stage)
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.MOVE_TICKET_STAGE,
            f'Moved ticket "{ticket.title}" from {old_stage.value} to {ticket.stage.value}',
            {
                "ticket_id": ticket.id,
                "old_stage": old_stage.value,
                "new_stage": ticket.stage.value,
                "completed_at": ticket.completed_at.isoformat() if ticket.completed_at else None,
            },
        )
        ticket = self.get_ticket(ticket.id)
        if old_stage != TicketStage.COMPLETED and ticket.stage == TicketStage.COMPLETED:
            self._notify_completed(ticket)
        return ticket

    def _notify_completed(self, ticket: Ticket) -> None:
        if ticket.assigned_user is not None:
            self._notify("send_ticket_completed", ticket.assigned_user, ticket, ticket.customer)

    def assign(self, id: uuid.UUID, assigned_user_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> Ticket:
        ticket = self.get_ticket(id)
        assignee = self._require_user(assigned_user_id)
        old_assigned_user_id = ticket.assigned_user_id
        ticket.assigned_user_id = assignee.id
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.ASSIGN_TICKET,
            f'Assigned ticket "{ticket.title}" to {assignee.name}',
            {
                "ticket_id": ticket.id,
                "old_assigned_user_id": old_assigned_user_id,
                "new_assigned_user_id": assignee.id,
            },
        )
        ticket = self.get_ticket(ticket.id)
        assigned_by = self.db.get(User, actor_id) if actor_id else None
        self._notify("send_ticket_assignment", assignee, ticket, ticket.customer, assigned_by)
        return ticket

    def add_note(self, id: uuid.UUID, content: str, actor_id: uuid.UUID) -> Note:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Note content is required")
        ticket = self.db.get(Ticket, id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        note = Note(content=content, ticket_id=ticket.id, user_id=actor_id)
        self.db.add(note)
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.ADD_NOTE,
            f"Added note to ticket: {ticket.title}",
            {"ticket_id": ticket.id, "note_id": note.id},
        )
        return self.db.query(Note).options(joinedload(Note.user)).filter(Note.id == note.id).one()

    def count_by_stage(self) -> Dict[str, int]:
        counts = {stage.value: 0 for stage in TicketStage}
        for stage, n in self.db.query(Ticket.stage, func.count(Ticket.id)).group_by(Ticket.stage).all():
            counts[TicketStage(stage).value] = int(n)
        return counts

    def count_by_priority(self) -> Dict[str, int]:
        counts = {priority.value: 0 for priority in TicketPriority}
        for priority, n in self.db.query(Ticket.priority, func.count(Ticket.id)).group_by(Ticket.priority).all():
            counts[TicketPriority(priority).value] = int(n)
        return counts

    def overdue_tickets(self) -> List[Ticket]:
        return (
            self.db.query(Ticket)
            .options(joinedload(Ticket.customer), joinedload(Ticket.assigned_user))
            .filter(overdue_clause())
            .order_by(Ticket.due_date.asc())
            .all()
        )

    def stats(self) -> Dict[str, Any]:
        total = self.db.query(func.count(Ticket.id)).scalar() or 0
        overdue = self.db.query(func.count(Ticket.id)).filter(overdue_clause()).scalar() or 0
        completed_this_month = (
            self.db.query(func.count(Ticket.id))
            .filter(Ticket.stage == TicketStage.COMPLETED, Ticket.completed_at >= month_start())
            .scalar()
            or 0
        )
        return {
            "total": total,
            "by_stage": self.count_by_stage(),
            "by_priority": self.count_by_priority(),
            "overdue": overdue,
            "completed_this_month": completed_this_month,
        }

    def notify_overdue(self) -> int:
        """Email the assignee of every overdue ticket. Returns how many tickets were notified."""
        sent = 0
        for ticket in self.overdue_tickets():
            if ticket.assigned_user is None:
                continue
            self._notify("send_ticket_overdue", ticket.assigned_user, ticket, ticket.customer)
            sent += 1
        return sent
