"""
CSV customer import.

Three passes over the upload, never going back:

1. parse     -> header list + row dicts (header -> raw string)
2. auto-map  -> which column holds name / email / phone / company
3. validate + import, row by row

Each row stands on its own: a bad row or a rejected duplicate is counted
and reported, and the rest of the batch carries on. Nothing is rolled back
across rows.
"""
import csv
import io
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..models.models import ActivityType
from ..schemas.common import EMAIL_RE
from .activity import ActivityRecorder, BoundActivityRecorder
from .customers import CustomerService
from .errors import ServiceError


logger = structlog.get_logger(__name__)

EMPTY_FILE_ERROR = "CSV file is empty"

NAME_HEADERS = {"name", "full name", "contact name"}
EMAIL_HEADERS = {"email", "e-mail", "mail"}
PHONE_HINTS = ("phone", "tel", "mobile")
COMPANY_HINTS = ("company", "organization", "business")

SAMPLE_ROWS = [
    ["Name", "Email", "Phone", "Company"],
    ["John Doe", "john.doe@example.com", "+1-555-0123", "Acme Corp"],
    ["Jane Smith", "jane.smith@example.com", "+1-555-0124", "Tech Solutions"],
    ["Bob Johnson", "bob.johnson@example.com", "+1-555-0125", "Global Industries"],
]


class CSVParseError(ServiceError):
    pass


@dataclass
class ParsedCSV:
    headers: List[str]
    rows: List[Dict[str, str]]


@dataclass
class RowValidation:
    valid_rows: List[Dict[str, str]] = field(default_factory=list)
    invalid_rows: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    success: bool
    imported: int
    failed: int
    errors: List[str]
    customers: List[Dict[str, Any]]

    def summary(self) -> str:
        return f"Import completed: {self.imported} customers imported, {self.failed} failed"


def decode_csv(content: Union[bytes, str]) -> str:
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CSVParseError(f"CSV parsing failed: file is not valid UTF-8 ({e.reason})")


def _is_blank_line(record: List[str]) -> bool:
    return not record or (len(record) == 1 and not record[0].strip())


def parse_csv(content: Union[bytes, str]) -> ParsedCSV:
    """Split raw CSV into headers and row dicts. Blank lines are skipped, short rows padded.

    A line holding only separators (",,") is a data row with blank cells, not a blank line.
    """
    text = decode_csv(content)
    try:
        reader = csv.reader(io.StringIO(text, newline=""), strict=True)
        headers: Optional[List[str]] = None
        rows: List[Dict[str, str]] = []
        for record in reader:
            if _is_blank_line(record):
                continue
            if headers is None:
                if not any(cell.strip() for cell in record):
                    continue
                headers = [h.strip() for h in record]
                continue
            padded = record + [""] * (len(headers) - len(record))
            values: Dict[str, str] = {}
            for header, value in zip(headers, padded):
                # Duplicate header names keep the first column's value
                values.setdefault(header, value)
            rows.append(values)
    except csv.Error as e:
        raise CSVParseError(f"CSV parsing failed: {e}")
    return ParsedCSV(headers=headers or [], rows=rows)


def _classify(header: str) -> Optional[str]:
    h = header.strip().lower()
    if h in NAME_HEADERS:
        return "name"
    if h in EMAIL_HEADERS or "email" in h:
        return "email"
    if any(hint in h for hint in PHONE_HINTS):
        return "phone"
    if any(hint in h for hint in COMPANY_HINTS):
        return "company"
    return None


def auto_map_fields(headers: List[str]) -> Dict[str, int]:
    """Map customer fields to column indexes. The first matching header per field wins."""
    mapping: Dict[str, int] = {}
    for index, header in enumerate(headers):
        target = _classify(header)
        if target and target not in mapping:
            mapping[target] = index
    return mapping


def _cell(row: Dict[str, str], headers: List[str], index: Optional[int]) -> str:
    if index is None or index >= len(headers):
        return ""
    return (row.get(headers[index]) or "").strip()


def validate_rows(parsed: ParsedCSV, mapping: Dict[str, int]) -> RowValidation:
    result = RowValidation()
    headers = parsed.headers
    for i, row in enumerate(parsed.rows):
        label = f"Row {i + 1}"
        row_errors: List[str] = []
        customer: Dict[str, str] = {}

        if "name" in mapping:
            name = _cell(row, headers, mapping["name"])
            if name:
                customer["name"] = name
            else:
                row_errors.append(f"{label}: Name is required")
        else:
            row_errors.append(f"{label}: Name field not found")

        email = _cell(row, headers, mapping.get("email"))
        if email:
            if EMAIL_RE.match(email):
                customer["email"] = email
            else:
                row_errors.append(f"{label}: Invalid email format")

        for key in ("phone", "company"):
            value = _cell(row, headers, mapping.get(key))
            if value:
                customer[key] = value

        if row_errors:
            result.invalid_rows.append({"row": customer, "errors": row_errors})
            result.errors.extend(row_errors)
        else:
            result.valid_rows.append(customer)
    return result


def sample_csv() -> str:
    return "\n".join(",".join(row) for row in SAMPLE_ROWS)


class CustomerImportService:
    def __init__(
        self,
        customers: CustomerService,
        activity: Optional[Union[ActivityRecorder, BoundActivityRecorder]] = None,
    ):
        self.customers = customers
        self.activity = activity

    def import_customers(self, content: Union[bytes, str], actor_id: Optional[uuid.UUID] = None) -> ImportResult:
        try:
            parsed = parse_csv(content)
        except CSVParseError as e:
            return ImportResult(success=False, imported=0, failed=0, errors=[e.message], customers=[])

        if not parsed.rows:
            return ImportResult(success=False, imported=0, failed=0, errors=[EMPTY_FILE_ERROR], customers=[])

        mapping = auto_map_fields(parsed.headers)
        validation = validate_rows(parsed, mapping)

        errors = list(validation.errors)
        imported: List[Dict[str, Any]] = []
        failed = len(validation.invalid_rows)

        for data in validation.valid_rows:
            try:
                customer = self.customers.create_customer(data)
            except ServiceError as e:
                failed += 1
                errors.append(f'Failed to import customer "{data.get("name")}": {e.message}')
                continue
            except SQLAlchemyError as e:
                self.customers.db.rollback()
                failed += 1
                logger.warning("customer_import_row_failed", name=data.get("name"), error=str(e))
                errors.append(f'Failed to import customer "{data.get("name")}": database error')
                continue
            imported.append(
                {"id": customer.id, "name": customer.name, "email": customer.email, "company": customer.company}
            )

        result = ImportResult(
            success=len(imported) > 0,
            imported=len(imported),
            failed=failed,
            errors=errors,
            customers=imported,
        )
        logger.info("customer_import_finished", imported=result.imported, failed=result.failed, mapping=mapping)
        if self.activity is not None and actor_id is not None:
            self.activity.record(
                actor_id,
                ActivityType.IMPORT_CUSTOMERS,
                f"Imported {result.imported} customers, {result.failed} failed",
                {"imported": result.imported, "failed": result.failed, "errors": result.errors[:5]},
            )
        return result
