"""
User activity log.

Append-only records of what users did. Services never write these inline:
they hand entries to an ``ActivityRecorder``, which writes them from a
background worker so a slow or failing insert never touches the request.
Failures are only visible in the logs.
"""
import json
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import uuid

import structlog
from sqlalchemy.orm import Session, joinedload

from ..models.models import ActivityType, UserActivity


logger = structlog.get_logger(__name__)


def _jsonable(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    # UUIDs, datetimes and enums come through as plain strings
    return json.loads(json.dumps(metadata, default=lambda v: getattr(v, "value", None) or str(v)))


class ActivityService:
    def __init__(self, db: Session):
        self.db = db

    def log_activity(
        self,
        user_id: uuid.UUID,
        activity_type: ActivityType,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserActivity:
        activity = UserActivity(
            user_id=user_id,
            activity_type=ActivityType(activity_type),
            description=description,
            metadata_json=_jsonable(metadata),
            ip_address=ip_address,
            user_agent=user_agent[:512] if user_agent else None,
        )
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        return activity

    def user_activities(self, user_id: uuid.UUID, limit: int = 50, offset: int = 0) -> Tuple[List[UserActivity], int]:
        query = self.db.query(UserActivity).filter(UserActivity.user_id == user_id)
        total = query.count()
        items = (
            query.options(joinedload(UserActivity.user))
            .order_by(UserActivity.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def recent(self, limit: int = 20) -> List[UserActivity]:
        return (
            self.db.query(UserActivity)
            .options(joinedload(UserActivity.user))
            .order_by(UserActivity.created_at.desc())
            .limit(limit)
            .all()
        )

    def by_type(self, activity_type: ActivityType, limit: int = 50, offset: int = 0) -> Tuple[List[UserActivity], int]:
        query = self.db.query(UserActivity).filter(UserActivity.activity_type == ActivityType(activity_type))
        total = query.count()
        items = (
            query.options(joinedload(UserActivity.user))
            .order_by(UserActivity.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def cleanup(self, days_to_keep: int = 90) -> int:
        """Delete entries older than ``days_to_keep`` days. Returns the number removed."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        deleted = (
            self.db.query(UserActivity)
            .filter(UserActivity.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted or 0)


@dataclass
class ActivityEntry:
    user_id: uuid.UUID
    activity_type: ActivityType
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_STOP = object()


class ActivityRecorder:
    """
    Non-blocking channel for activity entries.

    ``record`` enqueues and returns immediately; a daemon thread drains the
    queue, writing each entry with a fresh session from ``session_factory``.
    With ``background=False`` entries are written inline (scripts, tests),
    still without raising.
    """

    def __init__(self, session_factory: Callable[[], Session], background: bool = True, max_queue: int = 1000):
        self._session_factory = session_factory
        self._background = background
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue)
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        if not self._background:
            return
        with self._lock:
            if self._worker and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="activity-recorder", daemon=True)
            self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker and worker.is_alive():
            self._queue.put(_STOP)
            worker.join(timeout)

    def flush(self) -> None:
        """Block until every queued entry has been handled."""
        if self._background and self._worker and self._worker.is_alive():
            self._queue.join()

    def bind(self, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> "BoundActivityRecorder":
        return BoundActivityRecorder(self, ip_address=ip_address, user_agent=user_agent)

    def record(
        self,
        user_id: Optional[uuid.UUID],
        activity_type: ActivityType,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if user_id is None:
            return
        entry = ActivityEntry(
            user_id=user_id,
            activity_type=ActivityType(activity_type),
            description=description,
            metadata=metadata,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if not self._background:
            self._write(entry)
            return
        self.start()
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            logger.warning("activity_queue_full", activity_type=str(entry.activity_type.value), user_id=str(user_id))

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                self._write(entry)
            finally:
                self._queue.task_done()

    def _write(self, entry: ActivityEntry) -> None:
        db = self._session_factory()
        try:
            ActivityService(db).log_activity(
                entry.user_id,
                entry.activity_type,
                entry.description,
                entry.metadata,
                entry.ip_address,
                entry.user_agent,
            )
        except Exception as e:
            db.rollback()
            logger.warning(
                "activity_log_failed",
                activity_type=entry.activity_type.value,
                user_id=str(entry.user_id),
                error=str(e),
            )
        finally:
            db.close()


class BoundActivityRecorder:
    """Recorder view carrying the request's IP address and user agent."""

    def __init__(self, recorder: ActivityRecorder, ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        self._recorder = recorder
        self.ip_address = ip_address
        self.user_agent = user_agent

    def record(
        self,
        user_id: Optional[uuid.UUID],
        activity_type: ActivityType,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._recorder.record(
            user_id,
            activity_type,
            description,
            metadata,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
