"""
Filesystem backups and account deletion.

A backup is a directory under ``backup_dir`` holding the JSON exports of
customers, tickets and users plus a ``metadata.json`` describing it.
"""
import json
import shutil
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Note, Ticket, User, UserActivity
from .errors import NotFoundError, ServiceError, ValidationError
from .exports import ExportOptions, ExportService, format_bytes


logger = structlog.get_logger(__name__)

BACKUP_KINDS = ("daily", "manual", "account_deletion")
DATA_FILES = ("customers", "tickets", "users")


class BackupError(ServiceError):
    status_code = 500


def _parse_created_at(metadata: Dict[str, Any]) -> datetime:
    created = datetime.fromisoformat(metadata["created_at"])
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


class BackupService:
    def __init__(self, db: Session, backup_dir: Optional[str] = None):
        self.db = db
        self.backup_dir = Path(backup_dir or settings.backup_dir)

    def _ensure_dir(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _backup_id(self, kind: str, user_id: Optional[uuid.UUID]) -> str:
        now = datetime.now(timezone.utc)
        parts = [kind]
        if kind == "account_deletion" and user_id:
            parts.append(str(user_id))
        parts.append(now.strftime("%Y%m%dT%H%M%S"))
        parts.append(uuid.uuid4().hex[:8])
        return "_".join(parts)

    def create_backup(self, kind: str = "manual", user_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        if kind not in BACKUP_KINDS:
            raise ValidationError(f"Unknown backup type: {kind}")
        backup_id = self._backup_id(kind, user_id)
        try:
            self._ensure_dir()
            path = self.backup_dir / backup_id
            path.mkdir(parents=True, exist_ok=True)

            data = ExportService(self.db).export_all(ExportOptions(include_notes=True, format="json"))
            files: List[str] = []
            size = 0
            for name in DATA_FILES:
                filename = f"{name}.json"
                payload = data[name].encode("utf-8")
                (path / filename).write_bytes(payload)
                files.append(filename)
                size += len(payload)

            metadata = {
                "id": backup_id,
                "user_id": str(user_id) if user_id else None,
                "created_at": datetime.now(timezone.utc).isoformat(),
                "type": kind,
                "size": size,
                "files": files,
            }
            (path / "metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("backup_failed", backup_id=backup_id, error=str(e))
            raise BackupError(f"Backup creation failed: {e}")
        logger.info("backup_created", backup_id=backup_id, type=kind, size=format_bytes(size))
        return metadata

    def _scan(self) -> List[Tuple[Path, Dict[str, Any]]]:
        """(directory, metadata) for every readable backup, newest first."""
        if not self.backup_dir.exists():
            return []
        backups = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_dir():
                continue
            try:
                metadata = json.loads((entry / "metadata.json").read_text(encoding="utf-8"))
                _parse_created_at(metadata)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("backup_metadata_unreadable", backup=entry.name, error=str(e))
                continue
            backups.append((entry, metadata))
        backups.sort(key=lambda item: _parse_created_at(item[1]), reverse=True)
        return backups

    def list_backups(self) -> List[Dict[str, Any]]:
        return [metadata for _, metadata in self._scan()]

    def delete_old_backups(self, retention_days: Optional[int] = None) -> int:
        days = settings.backup_retention_days if retention_days is None else retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        deleted = 0
        for path, backup in self._scan():
            if _parse_created_at(backup) >= cutoff:
                continue
            # Remove the directory the metadata was read from; the recorded id is not trusted as a path
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.error("backup_delete_failed", backup=path.name, error=str(e))
                continue
            deleted += 1
            logger.info("backup_deleted", backup=path.name, backup_id=backup.get("id"))
        return deleted

    def stats(self) -> Dict[str, Any]:
        backups = self.list_backups()
        total = sum(int(b.get("size") or 0) for b in backups)
        return {
            "total_backups": len(backups),
            "total_size": format_bytes(total),
            "oldest_backup": backups[-1]["created_at"] if backups else None,
            "newest_backup": backups[0]["created_at"] if backups else None,
        }

    def run_scheduled_backup(self) -> Optional[Dict[str, Any]]:
        """Daily backup followed by retention cleanup. Never raises."""
        try:
            backup = self.create_backup("daily")
            removed = self.delete_old_backups()
            logger.info("scheduled_backup_finished", backup_id=backup["id"], removed=removed)
            return backup
        except Exception as e:
            logger.error("scheduled_backup_failed", error=str(e))
            return None

    def delete_user_account(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Back everything up, then remove the user and their trail in one transaction."""
        if self.db.get(User, user_id) is None:
            raise NotFoundError("User not found")
        backup = self.create_backup("account_deletion", user_id)

        affected = 0
        try:
            affected += self.db.execute(delete(UserActivity).where(UserActivity.user_id == user_id)).rowcount or 0
            affected += self.db.execute(delete(Note).where(Note.user_id == user_id)).rowcount or 0
            affected += (
                self.db.execute(
                    update(Ticket).where(Ticket.assigned_user_id == user_id).values(assigned_user_id=None)
                ).rowcount
                or 0
            )
            affected += self.db.execute(delete(User).where(User.id == user_id)).rowcount or 0
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("account_deletion_failed", user_id=str(user_id), error=str(e))
            raise BackupError(f"Account deletion failed: {e}")
        self.db.expire_all()
        logger.info("account_deleted", user_id=str(user_id), affected=affected, backup_id=backup["id"])
        return {"backup": backup, "deleted_records": affected}
