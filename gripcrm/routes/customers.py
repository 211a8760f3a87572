import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import PlainTextResponse, Response

from ..auth.security import require_verified_user
from ..config import settings
from ..models.models import User
from ..schemas.common import Page
from ..schemas.customers import (
    CustomerCreate,
    CustomerDetailResponse,
    CustomerListItem,
    CustomerResponse,
    CustomerStats,
    CustomerUpdate,
    ImportResultResponse,
    NoteCreate,
    NoteResponse,
)
from ..services.csv_import import CustomerImportService, sample_csv
from ..services.customers import CustomerService
from ..services.errors import ValidationError
from .deps import get_customer_service


router = APIRouter(prefix="/customers", tags=["customers"])

CSV_CONTENT_TYPE = "text/csv"


@router.get("", response_model=Page[CustomerListItem])
def list_customers(
    search: Optional[str] = None,
    company: Optional[str] = None,
    has_tickets: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    svc: CustomerService = Depends(get_customer_service),
    _: User = Depends(require_verified_user),
):
    result = svc.list_customers(search=search, company=company, has_tickets=has_tickets, limit=limit, offset=offset)
    counts = svc.ticket_counts([c.id for c in result["data"]])
    result["data"] = [
        CustomerListItem.model_validate(c).model_copy(update={"ticket_count": counts.get(c.id, 0)})
        for c in result["data"]
    ]
    return result


@router.get("/search", response_model=List[CustomerResponse])
def search_customers(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=100),
    svc: CustomerService = Depends(get_customer_service),
    _: User = Depends(require_verified_user),
):
    return svc.search_customers(q, limit=limit)


@router.get("/stats", response_model=CustomerStats)
def customer_stats(svc: CustomerService = Depends(get_customer_service), _: User = Depends(require_verified_user)):
    return svc.stats()


@router.get("/sample-csv", response_class=PlainTextResponse)
def download_sample_csv(_: User = Depends(require_verified_user)):
    return Response(
        content=sample_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="sample_customers.csv"'},
    )


@router.post("/import", response_model=ImportResultResponse)
async def import_customers(
    file: UploadFile = File(...),
    svc: CustomerService = Depends(get_customer_service),
    user: User = Depends(require_verified_user),
):
    filename = (file.filename or "").lower()
    if not filename.endswith(".csv") and (file.content_type or "").split(";")[0] != CSV_CONTENT_TYPE:
        raise ValidationError("Only CSV files are allowed")
    content = await file.read(settings.import_max_bytes + 1)
    if len(content) > settings.import_max_bytes:
        raise ValidationError("CSV file is too large")
    result = CustomerImportService(svc, activity=svc.activity).import_customers(content, actor_id=user.id)
    return ImportResultResponse(
        success=result.success,
        imported=result.imported,
        failed=result.failed,
        errors=result.errors,
        customers=result.customers,
        message=result.summary(),
    )


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    svc: CustomerService = Depends(get_customer_service),
    user: User = Depends(require_verified_user),
):
    return svc.create_customer(payload.model_dump(), actor_id=user.id)


@router.get("/{customer_id}", response_model=CustomerDetailResponse)
def get_customer(
    customer_id: uuid.UUID,
    svc: CustomerService = Depends(get_customer_service),
    _: User = Depends(require_verified_user),
):
    return svc.get_customer(customer_id)


@router.put("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: uuid.UUID,
    payload: CustomerUpdate,
    svc: CustomerService = Depends(get_customer_service),
    user: User = Depends(require_verified_user),
):
    return svc.update_customer(customer_id, payload.model_dump(exclude_unset=True), actor_id=user.id)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: uuid.UUID,
    svc: CustomerService = Depends(get_customer_service),
    user: User = Depends(require_verified_user),
):
    svc.delete_customer(customer_id, actor_id=user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{customer_id}/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def add_customer_note(
    customer_id: uuid.UUID,
    payload: NoteCreate,
    svc: CustomerService = Depends(get_customer_service),
    user: User = Depends(require_verified_user),
):
    return svc.add_note(customer_id, payload.content, actor_id=user.id)
