"""
Import customers from a CSV file.

Columns are matched to customer fields by header name (Name / Email /
Phone / Company and their usual variants). Rows that fail validation are
reported and skipped; the rest are created.

Usage:
    python scripts/import_customers.py <path_to_csv> [--dry-run] [--user-email you@example.com]

With --dry-run the file is parsed and validated but nothing is written.
With --user-email the import is recorded in that user's activity log.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")

from gripcrm.db import SessionLocal
from gripcrm.models.models import User
from gripcrm.services.activity import ActivityRecorder
from gripcrm.services.csv_import import CustomerImportService, auto_map_fields, parse_csv, validate_rows, CSVParseError
from gripcrm.services.customers import CustomerService


def dry_run_report(content: bytes) -> int:
    try:
        parsed = parse_csv(content)
    except CSVParseError as e:
        print(f"ERROR: {e.message}")
        return 1
    mapping = auto_map_fields(parsed.headers)
    print(f"Headers: {parsed.headers}")
    print(f"Mapping: { {field: parsed.headers[i] for field, i in mapping.items()} }")
    validation = validate_rows(parsed, mapping)
    for error in validation.errors:
        print(f"  [INVALID] {error}")
    print(f"\n[DRY RUN] {len(validation.valid_rows)} rows would be imported, {len(validation.invalid_rows)} invalid")
    return 0


def import_customers(csv_path: str, dry_run: bool = False, user_email: str = None) -> int:
    if not os.path.exists(csv_path):
        print(f"ERROR: File not found: {csv_path}")
        return 1

    with open(csv_path, "rb") as f:
        content = f.read()

    if dry_run:
        return dry_run_report(content)

    db = SessionLocal()
    recorder = ActivityRecorder(SessionLocal, background=False)
    try:
        actor_id = None
        if user_email:
            user = db.query(User).filter(User.email == user_email.strip().lower()).first()
            if not user:
                print(f"ERROR: No user with email {user_email}")
                return 1
            actor_id = user.id

        result = CustomerImportService(CustomerService(db), activity=recorder).import_customers(content, actor_id)
        for customer in result.customers:
            print(f"  [OK] {customer['name']} ({customer['email'] or 'no email'})")
        for error in result.errors:
            print(f"  [ERROR] {error}")

        print(f"\n{'='*60}")
        print(result.summary())
        print(f"{'='*60}")
        return 0 if result.success or not result.errors else 2
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/import_customers.py <path_to_csv> [--dry-run] [--user-email EMAIL]")
        sys.exit(1)

    csv_path = sys.argv[1]
    dry_run = "--dry-run" in sys.argv or "-d" in sys.argv
    user_email = None
    if "--user-email" in sys.argv:
        idx = sys.argv.index("--user-email")
        if idx + 1 < len(sys.argv):
            user_email = sys.argv[idx + 1]

    sys.exit(import_customers(csv_path, dry_run=dry_run, user_email=user_email))
