import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import exists, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..models.models import ActivityType, Customer, Note, Ticket
from .activity import ActivityRecorder, BoundActivityRecorder
from .errors import ConflictError, NotFoundError, ValidationError
from .pagination import clamp_page, page_envelope


DUPLICATE_EMAIL = "Customer with this email already exists"

CUSTOMER_FIELDS = ("name", "email", "phone", "company", "notes")


class CustomerService:
    def __init__(self, db: Session, activity: Optional[Union[ActivityRecorder, BoundActivityRecorder]] = None):
        self.db = db
        self.activity = activity

    def _record(self, actor_id, activity_type: ActivityType, description: str, metadata: Dict[str, Any]) -> None:
        if self.activity is not None and actor_id is not None:
            self.activity.record(actor_id, activity_type, description, metadata)

    def _email_taken(self, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        q = self.db.query(Customer.id).filter(Customer.email == email)
        if exclude_id is not None:
            q = q.filter(Customer.id != exclude_id)
        return q.first() is not None

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race on the unique email index
            self.db.rollback()
            raise ConflictError(DUPLICATE_EMAIL)

    def create_customer(self, data: Dict[str, Any], actor_id: Optional[uuid.UUID] = None) -> Customer:
        values = {k: data.get(k) for k in CUSTOMER_FIELDS if data.get(k) is not None}
        if not (values.get("name") or "").strip():
            raise ValidationError("Name is required")
        if values.get("email") and self._email_taken(values["email"]):
            raise ConflictError(DUPLICATE_EMAIL)
        customer = Customer(**values)
        self.db.add(customer)
        self._commit()
        self.db.refresh(customer)
        self._record(
            actor_id,
            ActivityType.CREATE_CUSTOMER,
            f"Created customer: {customer.name}",
            {"customer_id": customer.id},
        )
        return customer

    def update_customer(self, id: uuid.UUID, data: Dict[str, Any], actor_id: Optional[uuid.UUID] = None) -> Customer:
        customer = self.db.get(Customer, id)
        if not customer:
            raise NotFoundError("Customer not found")
        new_email = data.get("email")
        if new_email and new_email != customer.email and self._email_taken(new_email, exclude_id=customer.id):
            raise ConflictError(DUPLICATE_EMAIL)
        if "name" in data and not (data["name"] or "").strip():
            raise ValidationError("Name is required")
        changed = []
        for key in CUSTOMER_FIELDS:
            if key in data and getattr(customer, key) != data[key]:
                setattr(customer, key, data[key])
                changed.append(key)
        self._commit()
        self.db.refresh(customer)
        self._record(
            actor_id,
            ActivityType.UPDATE_CUSTOMER,
            f"Updated customer: {customer.name}",
            {"customer_id": customer.id, "fields": changed},
        )
        return customer

    def get_customer(self, id: uuid.UUID) -> Customer:
        customer = (
            self.db.query(Customer)
            .options(selectinload(Customer.tickets), selectinload(Customer.customer_notes).selectinload(Note.user))
            .filter(Customer.id == id)
            .first()
        )
        if not customer:
            raise NotFoundError("Customer not found")
        return customer

    def ticket_counts(self, customer_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
        if not customer_ids:
            return {}
        rows = (
            self.db.query(Ticket.customer_id, func.count(Ticket.id))
            .filter(Ticket.customer_id.in_(customer_ids))
            .group_by(Ticket.customer_id)
            .all()
        )
        return {cid: int(n) for cid, n in rows}

    def list_customers(
        self,
        search: Optional[str] = None,
        company: Optional[str] = None,
        has_tickets: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        limit, offset = clamp_page(limit, offset)
        query = self.db.query(Customer)
        if search:
            like = f"%{search}%"
            query = query.filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.company.ilike(like)))
        if company:
            query = query.filter(Customer.company.ilike(f"%{company}%"))
        if has_tickets is not None:
            has_any = exists().where(Ticket.customer_id == Customer.id)
            query = query.filter(has_any if has_tickets else ~has_any)
        total = query.count()
        customers = query.order_by(Customer.created_at.desc()).offset(offset).limit(limit).all()
        return page_envelope(customers, total, limit, offset)

    def search_customers(self, query: str, limit: int = 10) -> List[Customer]:
        like = f"%{query}%"
        return (
            self.db.query(Customer)
            .filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.company.ilike(like)))
            .order_by(Customer.name.asc())
            .limit(max(1, min(100, limit)))
            .all()
        )

    def delete_customer(self, id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> None:
        customer = self.db.get(Customer, id)
        if not customer:
            raise NotFoundError("Customer not found")
        if self.db.query(Ticket.id).filter(Ticket.customer_id == customer.id).first() is not None:
            raise ConflictError("Cannot delete customer with associated tickets")
        name = customer.name
        self.db.delete(customer)
        self.db.commit()
        self._record(
            actor_id,
            ActivityType.DELETE_CUSTOMER,
            f"Deleted customer: {name}",
            {"customer_id": id},
        )

    def add_note(self, id: uuid.UUID, content: str, actor_id: uuid.UUID) -> Note:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Note content is required")
        customer = self.db.get(Customer, id)
        if not customer:
            raise NotFoundError("Customer not found")
        note = Note(content=content, customer_id=customer.id, user_id=actor_id)
        self.db.add(note)
        self.db.commit()
        self.db.refresh(note)
        self._record(
            actor_id,
            ActivityType.ADD_NOTE,
            f"Added note to customer: {customer.name}",
            {"customer_id": customer.id, "note_id": note.id},
        )
        return note

    def stats(self) -> Dict[str, int]:
        total = self.db.query(func.count(Customer.id)).scalar() or 0
        with_tickets = (
            self.db.query(func.count(Customer.id))
            .filter(exists().where(Ticket.customer_id == Customer.id))
            .scalar()
            or 0
        )
        since = datetime.now(timezone.utc) - timedelta(days=30)
        recently_added = self.db.query(func.count(Customer.id)).filter(Customer.created_at >= since).scalar() or 0
        return {
            "total": total,
            "with_tickets": with_tickets,
            "without_tickets": total - with_tickets,
            "recently_added": recently_added,
        }
