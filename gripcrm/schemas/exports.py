import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.models import ActivityType


class ExportStats(BaseModel):
    total_customers: int
    total_tickets: int
    total_users: int
    estimated_export_size: str


class BackupMetadataResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    created_at: datetime
    type: str
    size: int
    files: List[str]


class BackupStats(BaseModel):
    total_backups: int
    total_size: str
    oldest_backup: Optional[datetime] = None
    newest_backup: Optional[datetime] = None


class AccountDeletionResponse(BaseModel):
    backup: BackupMetadataResponse
    deleted_records: int
    message: str


class ActivityResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    activity_type: ActivityType
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
