import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, joinedload, selectinload

from ..models.models import Customer, Note, Ticket, User, ensure_utc
from .errors import ValidationError


CUSTOMER_HEADERS = [
    "ID",
    "Name",
    "Email",
    "Phone",
    "Company",
    "Notes",
    "Created At",
    "Updated At",
    "Ticket Count",
]

TICKET_HEADERS = [
    "ID",
    "Title",
    "Description",
    "Customer Name",
    "Customer Email",
    "Assigned User",
    "Stage",
    "Priority",
    "Due Date",
    "Completed At",
    "Created At",
    "Updated At",
]

USER_HEADERS = ["ID", "Email", "Name", "Is Verified", "Created At", "Updated At"]

FORMATS = ("csv", "json")


@dataclass
class ExportOptions:
    include_notes: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    format: str = "csv"

    def __post_init__(self):
        if self.format not in FORMATS:
            raise ValidationError(f"Unsupported export format: {self.format}")
        if (self.start is None) != (self.end is None):
            raise ValidationError("Both start and end dates are required for a date range")
        self.start = ensure_utc(self.start)
        self.end = ensure_utc(self.end)


def iso(value: Optional[datetime]) -> str:
    return ensure_utc(value).isoformat() if value else ""


def escape_csv_value(value: Any) -> str:
    """Quote a field when it holds a comma, quote or newline; inner quotes are doubled."""
    if value is None:
        return ""
    text = str(value)
    if any(ch in text for ch in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def to_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    return "\n".join(",".join(escape_csv_value(v) for v in row) for row in [headers, *rows])


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _note_line(note: Note, with_author: bool) -> str:
    if with_author:
        author = note.user.name if note.user else ""
        return f"{iso(note.created_at)} ({author}): {note.content}"
    return f"{iso(note.created_at)}: {note.content}"


class ExportService:
    def __init__(self, db: Session):
        self.db = db

    def _customers(self, options: ExportOptions) -> List[Customer]:
        query = self.db.query(Customer).options(selectinload(Customer.tickets))
        if options.include_notes:
            query = query.options(selectinload(Customer.customer_notes))
        if options.start is not None:
            query = query.filter(Customer.created_at.between(options.start, options.end))
        return query.order_by(Customer.created_at.asc()).all()

    def _tickets(self, options: ExportOptions) -> List[Ticket]:
        query = self.db.query(Ticket).options(joinedload(Ticket.customer), joinedload(Ticket.assigned_user))
        if options.include_notes:
            query = query.options(selectinload(Ticket.notes).joinedload(Note.user))
        if options.start is not None:
            query = query.filter(Ticket.created_at.between(options.start, options.end))
        return query.order_by(Ticket.created_at.asc()).all()

    def export_customers(self, options: Optional[ExportOptions] = None) -> str:
        options = options or ExportOptions()
        customers = self._customers(options)
        if options.format == "json":
            return json.dumps([self._customer_record(c, options.include_notes) for c in customers], indent=2)

        headers = list(CUSTOMER_HEADERS)
        if options.include_notes:
            headers.append("Customer Notes")
        rows = []
        for c in customers:
            row = [
                c.id,
                c.name,
                c.email or "",
                c.phone or "",
                c.company or "",
                c.notes or "",
                iso(c.created_at),
                iso(c.updated_at),
                len(c.tickets),
            ]
            if options.include_notes:
                row.append(" | ".join(_note_line(n, False) for n in c.customer_notes))
            rows.append(row)
        return to_csv(headers, rows)

    def export_tickets(self, options: Optional[ExportOptions] = None) -> str:
        options = options or ExportOptions()
        tickets = self._tickets(options)
        if options.format == "json":
            return json.dumps([self._ticket_record(t, options.include_notes) for t in tickets], indent=2)

        headers = list(TICKET_HEADERS)
        if options.include_notes:
            headers.append("Notes")
        rows = []
        for t in tickets:
            row = [
                t.id,
                t.title,
                t.description,
                t.customer.name if t.customer else "",
                (t.customer.email if t.customer else "") or "",
                t.assigned_user.name if t.assigned_user else "",
                t.stage.value,
                t.priority.value,
                iso(t.due_date),
                iso(t.completed_at),
                iso(t.created_at),
                iso(t.updated_at),
            ]
            if options.include_notes:
                row.append(" | ".join(_note_line(n, True) for n in t.notes))
            rows.append(row)
        return to_csv(headers, rows)

    def export_users(self, options: Optional[ExportOptions] = None) -> str:
        options = options or ExportOptions()
        users = self.db.query(User).order_by(User.created_at.asc()).all()
        if options.format == "json":
            return json.dumps([self._user_record(u) for u in users], indent=2)
        rows = [
            [u.id, u.email, u.name, "true" if u.is_verified else "false", iso(u.created_at), iso(u.updated_at)]
            for u in users
        ]
        return to_csv(USER_HEADERS, rows)

    def export_all(self, options: Optional[ExportOptions] = None) -> Dict[str, str]:
        options = options or ExportOptions(format="json")
        if options.format == "csv":
            raise ValidationError(
                "CSV format not supported for full export. Use JSON format or export individual data types."
            )
        return {
            "customers": self.export_customers(options),
            "tickets": self.export_tickets(options),
            "users": self.export_users(options),
        }

    def stats(self) -> Dict[str, Any]:
        total_customers = self.db.query(Customer).count()
        total_tickets = self.db.query(Ticket).count()
        total_users = self.db.query(User).count()
        # Rough per-record sizes
        estimated = total_customers * 500 + total_tickets * 1000 + total_users * 200
        return {
            "total_customers": total_customers,
            "total_tickets": total_tickets,
            "total_users": total_users,
            "estimated_export_size": format_bytes(estimated),
        }

    @staticmethod
    def _customer_record(c: Customer, include_notes: bool) -> Dict[str, Any]:
        record = {
            "id": str(c.id),
            "name": c.name,
            "email": c.email,
            "phone": c.phone,
            "company": c.company,
            "notes": c.notes,
            "created_at": iso(c.created_at),
            "updated_at": iso(c.updated_at),
            "ticket_count": len(c.tickets),
            "ticket_ids": [str(t.id) for t in c.tickets],
        }
        if include_notes:
            record["customer_notes"] = [
                {"id": str(n.id), "content": n.content, "user_id": str(n.user_id), "created_at": iso(n.created_at)}
                for n in c.customer_notes
            ]
        return record

    @staticmethod
    def _ticket_record(t: Ticket, include_notes: bool) -> Dict[str, Any]:
        record = {
            "id": str(t.id),
            "title": t.title,
            "description": t.description,
            "customer_id": str(t.customer_id),
            "customer_name": t.customer.name if t.customer else None,
            "customer_email": t.customer.email if t.customer else None,
            "assigned_user_id": str(t.assigned_user_id) if t.assigned_user_id else None,
            "assigned_user_name": t.assigned_user.name if t.assigned_user else None,
            "stage": t.stage.value,
            "priority": t.priority.value,
            "due_date": iso(t.due_date) or None,
            "completed_at": iso(t.completed_at) or None,
            "created_at": iso(t.created_at),
            "updated_at": iso(t.updated_at),
        }
        if include_notes:
            record["notes"] = [
                {
                    "id": str(n.id),
                    "content": n.content,
                    "user_id": str(n.user_id),
                    "user_name": n.user.name if n.user else None,
                    "created_at": iso(n.created_at),
                }
                for n in t.notes
            ]
        return record

    @staticmethod
    def _user_record(u: User) -> Dict[str, Any]:
        # Never export password hashes or tokens
        return {
            "id": str(u.id),
            "email": u.email,
            "name": u.name,
            "is_verified": bool(u.is_verified),
            "created_at": iso(u.created_at),
            "updated_at": iso(u.updated_at),
        }
