import csv
import io
import json
import shutil
import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from gripcrm.auth.security import create_access_token
from gripcrm.db import get_db
from gripcrm.main import app
from gripcrm.models.models import ActivityType, Customer, User, UserActivity
from gripcrm.services.activity import ActivityRecorder
from gripcrm.services.exports import TICKET_HEADERS

from support import FakeNotifier, create_customer, create_ticket, create_user, make_session_factory


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        self._saved_state = (app.state.activity_recorder, app.state.notifier)
        app.dependency_overrides[get_db] = override_get_db
        app.state.activity_recorder = ActivityRecorder(self.Session, background=False)
        app.state.notifier = self.notifier = FakeNotifier()
        app.state.limiter.reset()
        self.client = TestClient(app)

        self.user = create_user(self.db)
        self.headers = {"Authorization": f"Bearer {create_access_token(self.user)}"}

    def tearDown(self):
        app.dependency_overrides.clear()
        app.state.activity_recorder, app.state.notifier = self._saved_state
        self.db.close()
        self.engine.dispose()


class AuthApiTests(ApiTestCase):
    def test_register_verify_login(self):
        resp = self.client.post(
            "/api/auth/register",
            json={"email": "new@example.com", "name": "New Person", "password": "secret1"},
        )
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["user"]["email"], "new@example.com")
        self.assertFalse(body["user"]["is_verified"])
        unverified = {"Authorization": f"Bearer {body['access_token']}"}

        self.assertEqual(self.client.get("/api/customers", headers=unverified).status_code, 403)
        self.assertEqual(
            self.client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret1"}).status_code,
            403,
        )

        token = self.db.query(User).filter(User.email == "new@example.com").one().verification_token
        self.assertEqual(self.client.get(f"/api/auth/verify/{token}").status_code, 200)

        resp = self.client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret1"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["token_type"], "bearer")

    def test_register_validation(self):
        resp = self.client.post("/api/auth/register", json={"email": "bad", "name": "X", "password": "1"})
        self.assertEqual(resp.status_code, 422)

    def test_wrong_password(self):
        resp = self.client.post("/api/auth/login", json={"email": "agent@example.com", "password": "nope123"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "Invalid email or password")

    def test_me_requires_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        resp = self.client.get("/api/auth/me", headers=self.headers)
        self.assertEqual(resp.json()["email"], "agent@example.com")


class CustomerApiTests(ApiTestCase):
    def test_crud(self):
        resp = self.client.post(
            "/api/customers",
            json={"name": "Jane Buyer", "email": "jane@example.com", "company": "Jane Co", "phone": ""},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 201)
        customer = resp.json()
        self.assertIsNone(customer["phone"])

        dup = self.client.post(
            "/api/customers", json={"name": "Other", "email": "jane@example.com"}, headers=self.headers
        )
        self.assertEqual(dup.status_code, 409)
        self.assertEqual(dup.json()["detail"], "Customer with this email already exists")

        resp = self.client.put(f"/api/customers/{customer['id']}", json={"phone": "555"}, headers=self.headers)
        self.assertEqual(resp.json()["phone"], "555")

        listing = self.client.get("/api/customers", params={"search": "jane"}, headers=self.headers).json()
        self.assertEqual(listing["total"], 1)
        self.assertEqual(listing["data"][0]["ticket_count"], 0)
        self.assertEqual(listing["page"], 1)

        self.assertEqual(self.client.delete(f"/api/customers/{customer['id']}", headers=self.headers).status_code, 204)
        self.assertEqual(self.client.get(f"/api/customers/{customer['id']}", headers=self.headers).status_code, 404)

    def test_invalid_email_rejected(self):
        resp = self.client.post("/api/customers", json={"name": "X", "email": "nope"}, headers=self.headers)
        self.assertEqual(resp.status_code, 422)

    def test_delete_with_tickets_conflicts(self):
        customer = create_customer(self.db)
        create_ticket(self.db, customer)
        resp = self.client.delete(f"/api/customers/{customer.id}", headers=self.headers)
        self.assertEqual(resp.status_code, 409)

    def test_import(self):
        content = b"Name,E-Mail,Org\nAnn,ann@example.com,Ann Inc\nBob,bad-email,Bob Ltd\n"
        resp = self.client.post(
            "/api/customers/import",
            files={"file": ("people.csv", content, "text/csv")},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual((body["imported"], body["failed"]), (1, 1))
        self.assertEqual(body["errors"], ["Row 2: Invalid email format"])
        self.assertEqual(body["message"], "Import completed: 1 customers imported, 1 failed")
        self.assertEqual(self.db.query(Customer).count(), 1)

    def test_import_rejects_other_files(self):
        resp = self.client.post(
            "/api/customers/import",
            files={"file": ("people.xlsx", b"PK\x03\x04", "application/octet-stream")},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)

    def test_customer_note(self):
        customer = create_customer(self.db)
        resp = self.client.post(
            f"/api/customers/{customer.id}/notes", json={"content": " called "}, headers=self.headers
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["content"], "called")
        self.assertEqual(resp.json()["customer_id"], str(customer.id))


class TicketApiTests(ApiTestCase):
    def test_lifecycle(self):
        customer = create_customer(self.db)
        resp = self.client.post(
            "/api/tickets",
            json={
                "title": "Cannot print",
                "description": "Printer offline",
                "customer_id": str(customer.id),
                "stage": "completed",
            },
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 201)
        ticket = resp.json()
        self.assertEqual(ticket["stage"], "new")
        self.assertEqual(ticket["priority"], "medium")

        resp = self.client.patch(f"/api/tickets/{ticket['id']}/stage", json={"stage": "completed"}, headers=self.headers)
        self.assertIsNotNone(resp.json()["completed_at"])

        resp = self.client.put(f"/api/tickets/{ticket['id']}", json={"stage": "in_progress"}, headers=self.headers)
        self.assertIsNone(resp.json()["completed_at"])

        resp = self.client.patch(
            f"/api/tickets/{ticket['id']}/assign", json={"assigned_user_id": str(self.user.id)}, headers=self.headers
        )
        self.assertEqual(resp.json()["assigned_user"]["name"], "Agent Smith")
        self.assertEqual(self.notifier.names(), ["assignment"])

        self.client.post(f"/api/tickets/{ticket['id']}/notes", json={"content": "On it"}, headers=self.headers)
        detail = self.client.get(f"/api/tickets/{ticket['id']}", headers=self.headers).json()
        self.assertEqual([n["content"] for n in detail["notes"]], ["On it"])

        by_stage = self.client.get("/api/tickets/by-stage", headers=self.headers).json()
        self.assertEqual(by_stage, {"new": 0, "in_progress": 1, "waiting": 0, "completed": 0})

        kinds = {a.activity_type for a in self.db.query(UserActivity).all()}
        self.assertTrue(
            {ActivityType.CREATE_TICKET, ActivityType.MOVE_TICKET_STAGE, ActivityType.ASSIGN_TICKET} <= kinds
        )

    def test_unknown_customer_is_bad_request(self):
        resp = self.client.post(
            "/api/tickets",
            json={
                "title": "X",
                "description": "Y",
                "customer_id": "00000000-0000-0000-0000-000000000000",
            },
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "Customer not found")

    def test_invalid_stage(self):
        customer = create_customer(self.db)
        ticket = create_ticket(self.db, customer)
        resp = self.client.patch(f"/api/tickets/{ticket.id}/stage", json={"stage": "archived"}, headers=self.headers)
        self.assertEqual(resp.status_code, 422)


class ExportApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.backup_dir = tempfile.mkdtemp(prefix="gripcrm-api-backups-")
        patcher = mock.patch("gripcrm.services.backup.settings.backup_dir", self.backup_dir)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(shutil.rmtree, self.backup_dir, True)

    def test_ticket_csv_export(self):
        customer = create_customer(self.db)
        create_ticket(self.db, customer)
        resp = self.client.get("/api/export/tickets", headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/csv"))
        self.assertIn("attachment;", resp.headers["content-disposition"])
        header = next(csv.reader(io.StringIO(resp.text)))
        self.assertEqual(header, TICKET_HEADERS)
        entry = self.db.query(UserActivity).one()
        self.assertEqual(entry.activity_type, ActivityType.EXPORT_DATA)

    def test_full_export(self):
        create_customer(self.db)
        resp = self.client.get("/api/export/all", headers=self.headers)
        body = json.loads(resp.text)
        self.assertEqual(body["data"]["customers"][0]["name"], "Acme Buyer")
        self.assertEqual(self.client.get("/api/export/all?format=csv", headers=self.headers).status_code, 400)

    def test_backup_and_account_deletion(self):
        resp = self.client.post("/api/export/backup", headers=self.headers)
        self.assertEqual(resp.json()["type"], "manual")
        self.assertEqual(len(self.client.get("/api/export/backups", headers=self.headers).json()), 1)

        wrong = self.client.request("DELETE", "/api/export/account", json={"password": "bad"}, headers=self.headers)
        self.assertEqual(wrong.status_code, 401)

        resp = self.client.request("DELETE", "/api/export/account", json={"password": "secret1"}, headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["backup"]["type"], "account_deletion")
        self.assertEqual(self.db.query(User).count(), 0)
        self.assertEqual(self.client.get("/api/auth/me", headers=self.headers).status_code, 401)


class ActivityApiTests(ApiTestCase):
    def test_my_activity_exposes_metadata(self):
        customer = create_customer(self.db)
        self.client.post(f"/api/customers/{customer.id}/notes", json={"content": "hello"}, headers=self.headers)

        page = self.client.get("/api/activity/me", headers=self.headers).json()

        self.assertEqual(page["total"], 1)
        item = page["data"][0]
        self.assertEqual(item["activity_type"], "add_note")
        self.assertEqual(item["metadata"]["customer_id"], str(customer.id))
        self.assertNotIn("metadata_json", item)


class HealthTests(ApiTestCase):
    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.json()["status"], "ok")
        self.assertIn("X-Request-ID", resp.headers)


if __name__ == "__main__":
    unittest.main()
