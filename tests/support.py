from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gripcrm.auth.security import get_password_hash
from gripcrm.db import Base
from gripcrm.models.models import Customer, Ticket, TicketPriority, TicketStage, User


def make_session_factory():
    """One in-memory SQLite database shared by every session from the factory."""
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def create_user(db, email="agent@example.com", name="Agent Smith", password="secret1", verified=True) -> User:
    user = User(email=email, name=name, password_hash=get_password_hash(password), is_verified=verified)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_customer(db, name="Acme Buyer", email: Optional[str] = "buyer@acme.test", company="Acme") -> Customer:
    customer = Customer(name=name, email=email, company=company)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


def create_ticket(
    db,
    customer: Customer,
    title="Printer jam",
    stage=TicketStage.NEW,
    priority=TicketPriority.MEDIUM,
    due_date: Optional[datetime] = None,
    assigned_user: Optional[User] = None,
    completed_at: Optional[datetime] = None,
) -> Ticket:
    ticket = Ticket(
        title=title,
        description="Paper stuck in tray 2",
        customer_id=customer.id,
        stage=stage,
        priority=priority,
        due_date=due_date,
        assigned_user_id=assigned_user.id if assigned_user else None,
        completed_at=completed_at,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


class FakeNotifier:
    """Collects calls instead of sending email."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Tuple[str, tuple]] = []

    def _handle(self, name, *args):
        self.calls.append((name, args))
        if self.fail:
            raise RuntimeError("smtp down")

    def send_ticket_assignment(self, *args):
        self._handle("assignment", *args)

    def send_ticket_overdue(self, *args):
        self._handle("overdue", *args)

    def send_ticket_completed(self, *args):
        self._handle("completed", *args)

    def send_verification_email(self, *args):
        self._handle("verification", *args)

    def send_password_reset_email(self, *args):
        self._handle("password_reset", *args)

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]
