import json
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import require_verified_user
from ..db import get_db
from ..models.models import ActivityType, User
from ..schemas.auth import DeleteAccountRequest
from ..schemas.exports import AccountDeletionResponse, BackupMetadataResponse, BackupStats, ExportStats
from ..services.activity import BoundActivityRecorder
from ..services.auth import AuthService
from ..services.backup import BackupService
from ..services.exports import ExportOptions, ExportService
from .deps import get_backup_service, get_export_service, get_recorder


router = APIRouter(prefix="/export", tags=["export"])


def _options(
    include_notes: bool = False,
    format: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    default_format: str = "csv",
) -> ExportOptions:
    start, end = (start_date, end_date) if start_date and end_date else (None, None)
    return ExportOptions(include_notes=include_notes, start=start, end=end, format=format or default_format)


def _attachment(content: str, kind: str, fmt: str) -> Response:
    filename = f"{kind}_export_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.{fmt}"
    media_type = "application/json" if fmt == "json" else "text/csv"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _record_export(activity: Optional[BoundActivityRecorder], user: User, what: str, options: ExportOptions) -> None:
    if activity is None:
        return
    activity.record(
        user.id,
        ActivityType.EXPORT_DATA,
        f"Exported {what} data",
        {
            "format": options.format,
            "include_notes": options.include_notes,
            "start": options.start,
            "end": options.end,
        },
    )


@router.get("/customers")
def export_customers(
    include_notes: bool = False,
    format: str = "csv",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    svc: ExportService = Depends(get_export_service),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
    user: User = Depends(require_verified_user),
):
    options = _options(include_notes, format, start_date, end_date)
    content = svc.export_customers(options)
    _record_export(activity, user, "customers", options)
    return _attachment(content, "customers", options.format)


@router.get("/tickets")
def export_tickets(
    include_notes: bool = False,
    format: str = "csv",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    svc: ExportService = Depends(get_export_service),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
    user: User = Depends(require_verified_user),
):
    options = _options(include_notes, format, start_date, end_date)
    content = svc.export_tickets(options)
    _record_export(activity, user, "tickets", options)
    return _attachment(content, "tickets", options.format)


@router.get("/all")
def export_all(
    include_notes: bool = False,
    format: str = "json",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    svc: ExportService = Depends(get_export_service),
    activity: Optional[BoundActivityRecorder] = Depends(get_recorder),
    user: User = Depends(require_verified_user),
):
    options = _options(include_notes, format, start_date, end_date, default_format="json")
    data = svc.export_all(options)
    _record_export(activity, user, "all", options)
    body = json.dumps(
        {
            "export_date": datetime.now(timezone.utc).isoformat(),
            "data": {section: json.loads(content) for section, content in data.items()},
        },
        indent=2,
    )
    return _attachment(body, "full", "json")


@router.get("/stats", response_model=ExportStats)
def export_stats(svc: ExportService = Depends(get_export_service), _: User = Depends(require_verified_user)):
    return svc.stats()


@router.post("/backup", response_model=BackupMetadataResponse)
def create_backup(svc: BackupService = Depends(get_backup_service), user: User = Depends(require_verified_user)):
    return svc.create_backup("manual", user.id)


@router.get("/backups", response_model=List[BackupMetadataResponse])
def list_backups(svc: BackupService = Depends(get_backup_service), _: User = Depends(require_verified_user)):
    return svc.list_backups()


@router.get("/backup-stats", response_model=BackupStats)
def backup_stats(svc: BackupService = Depends(get_backup_service), _: User = Depends(require_verified_user)):
    return svc.stats()


@router.delete("/account", response_model=AccountDeletionResponse)
def delete_account(
    payload: DeleteAccountRequest,
    db: Session = Depends(get_db),
    svc: BackupService = Depends(get_backup_service),
    user: User = Depends(require_verified_user),
):
    AuthService(db).check_password(user, payload.password)
    result = svc.delete_user_account(user.id)
    return AccountDeletionResponse(
        backup=result["backup"],
        deleted_records=result["deleted_records"],
        message="Account deleted successfully. Backup has been created.",
    )
