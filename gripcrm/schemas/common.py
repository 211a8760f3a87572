import re
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

T = TypeVar("T")


def strip_to_none(v):
    if v is None:
        return None
    v = str(v).strip()
    return v or None


class Page(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str
    detail: Optional[str] = None
