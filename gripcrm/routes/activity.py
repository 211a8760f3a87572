from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_verified_user
from ..db import get_db
from ..models.models import ActivityType, User
from ..schemas.common import Page
from ..schemas.exports import ActivityResponse
from ..services.activity import ActivityService
from ..services.pagination import page_envelope


router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("/me", response_model=Page[ActivityResponse])
def my_activity(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_verified_user),
):
    items, total = ActivityService(db).user_activities(user.id, limit=limit, offset=offset)
    return page_envelope(items, total, limit, offset)


@router.get("/recent", response_model=List[ActivityResponse])
def recent_activity(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_verified_user),
):
    return ActivityService(db).recent(limit=limit)


@router.get("/type/{activity_type}", response_model=Page[ActivityResponse])
def activity_by_type(
    activity_type: ActivityType,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(require_verified_user),
):
    items, total = ActivityService(db).by_type(activity_type, limit=limit, offset=offset)
    return page_envelope(items, total, limit, offset)
