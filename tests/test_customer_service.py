import unittest
import uuid

from gripcrm.models.models import ActivityType, Customer, UserActivity
from gripcrm.services.activity import ActivityRecorder
from gripcrm.services.customers import DUPLICATE_EMAIL, CustomerService
from gripcrm.services.errors import ConflictError, NotFoundError, ValidationError

from support import create_customer, create_ticket, create_user, make_session_factory


class CustomerServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()
        self.user = create_user(self.db)
        self.svc = CustomerService(self.db, activity=ActivityRecorder(self.Session, background=False))

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_create_rejects_duplicate_email(self):
        self.svc.create_customer({"name": "Ann", "email": "ann@example.com"}, actor_id=self.user.id)
        with self.assertRaises(ConflictError) as ctx:
            self.svc.create_customer({"name": "Ann Again", "email": "ann@example.com"})
        self.assertEqual(ctx.exception.message, DUPLICATE_EMAIL)
        self.assertEqual(self.db.query(Customer).count(), 1)

    def test_create_requires_name(self):
        with self.assertRaises(ValidationError):
            self.svc.create_customer({"name": "  ", "email": "x@example.com"})

    def test_update_checks_duplicates_only_on_change(self):
        a = create_customer(self.db, name="A", email="a@example.com")
        create_customer(self.db, name="B", email="b@example.com")

        updated = self.svc.update_customer(a.id, {"email": "a@example.com", "phone": "123"}, actor_id=self.user.id)
        self.assertEqual(updated.phone, "123")

        with self.assertRaises(ConflictError):
            self.svc.update_customer(a.id, {"email": "b@example.com"})

        entry = self.db.query(UserActivity).filter(UserActivity.activity_type == ActivityType.UPDATE_CUSTOMER).one()
        self.assertEqual(entry.metadata_json["fields"], ["phone"])

    def test_update_missing_customer(self):
        with self.assertRaises(NotFoundError):
            self.svc.update_customer(uuid.uuid4(), {"name": "Nobody"})

    def test_delete_refused_while_tickets_exist(self):
        customer = create_customer(self.db)
        create_ticket(self.db, customer)

        with self.assertRaises(ConflictError) as ctx:
            self.svc.delete_customer(customer.id, actor_id=self.user.id)

        self.assertEqual(ctx.exception.message, "Cannot delete customer with associated tickets")
        self.assertIsNotNone(self.db.get(Customer, customer.id))

    def test_delete_removes_customer_and_notes(self):
        customer = create_customer(self.db)
        self.svc.add_note(customer.id, "Prefers phone calls", self.user.id)

        self.svc.delete_customer(customer.id, actor_id=self.user.id)

        self.assertIsNone(self.db.get(Customer, customer.id))
        kinds = [a.activity_type for a in self.db.query(UserActivity).all()]
        self.assertIn(ActivityType.DELETE_CUSTOMER, kinds)

    def test_get_customer_includes_tickets_and_notes(self):
        customer = create_customer(self.db)
        create_ticket(self.db, customer, title="One")
        self.svc.add_note(customer.id, "VIP", self.user.id)

        loaded = self.svc.get_customer(customer.id)

        self.assertEqual([t.title for t in loaded.tickets], ["One"])
        self.assertEqual(loaded.customer_notes[0].user.name, "Agent Smith")

    def test_list_filters(self):
        busy = create_customer(self.db, name="Busy Co Buyer", email="busy@example.com", company="Busy Co")
        create_customer(self.db, name="Quiet Person", email="quiet@example.com", company="Quiet Ltd")
        create_ticket(self.db, busy)

        self.assertEqual(self.svc.list_customers(search="QUIET")["total"], 1)
        self.assertEqual(self.svc.list_customers(company="busy")["data"][0].id, busy.id)
        self.assertEqual(self.svc.list_customers(has_tickets=True)["total"], 1)
        self.assertEqual(self.svc.list_customers(has_tickets=False)["data"][0].name, "Quiet Person")
        self.assertEqual(self.svc.ticket_counts([busy.id]), {busy.id: 1})

    def test_search_orders_by_name(self):
        create_customer(self.db, name="Zed", email="zed@acme.test", company="Acme")
        create_customer(self.db, name="Amy", email="amy@acme.test", company="Acme")
        self.assertEqual([c.name for c in self.svc.search_customers("acme")], ["Amy", "Zed"])

    def test_stats(self):
        busy = create_customer(self.db, name="One", email="one@example.com")
        create_customer(self.db, name="Two", email="two@example.com")
        create_ticket(self.db, busy)

        stats = self.svc.stats()

        self.assertEqual(stats, {"total": 2, "with_tickets": 1, "without_tickets": 1, "recently_added": 2})


if __name__ == "__main__":
    unittest.main()
