from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.activity import ActivityRecorder, BoundActivityRecorder
from ..services.auth import AuthService
from ..services.backup import BackupService
from ..services.customers import CustomerService
from ..services.exports import ExportService
from ..services.notifications import Notifier
from ..services.tickets import TicketService


def get_notifier(request: Request) -> Optional[Notifier]:
    return getattr(request.app.state, "notifier", None)


def get_recorder(request: Request) -> Optional[BoundActivityRecorder]:
    recorder: Optional[ActivityRecorder] = getattr(request.app.state, "activity_recorder", None)
    if recorder is None:
        return None
    ip = request.client.host if request.client else None
    return recorder.bind(ip_address=ip, user_agent=request.headers.get("user-agent"))


def get_auth_service(
    db: Session = Depends(get_db),
    notifier: Optional[Notifier] = Depends(get_notifier),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
) -> AuthService:
    return AuthService(db, notifier=notifier, activity=activity)


def get_customer_service(
    db: Session = Depends(get_db),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
) -> CustomerService:
    return CustomerService(db, activity=activity)


def get_ticket_service(
    db: Session = Depends(get_db),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
    notifier: Optional[Notifier] = Depends(get_notifier),
) -> TicketService:
    return TicketService(db, activity=activity, notifier=notifier)


def get_export_service(db: Session = Depends(get_db)) -> ExportService:
    return ExportService(db)


def get_backup_service(db: Session = Depends(get_db)) -> BackupService:
    return BackupService(db)
