# Overview: Threaded concurrency tests for the shared counters.

"""
Concurrency tests for the branch ledger.

Each worker runs in its own app context (its own session and connection)
against a file-backed SQLite database, so the guarded UPDATEs and version
checks are exercised across real connections.
"""
import os
import tempfile
import threading
import unittest

from branch_ledger import create_app
from branch_ledger.errors import ConflictError, InsufficientStockError
from branch_ledger.extensions import db
from branch_ledger.models import Branch, PaymentRepayment, PaymentSchedule, Product, StockHistoryEntry, User
from branch_ledger.services import credit_service
from branch_ledger.services.credit_service import ScheduleRow
from branch_ledger.services.stock_ledger_service import LineItem, create_transaction


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            branch = Branch(name="Concurrency Branch", opening_balance_cents=0, cash_balance_cents=0)
            db.session.add(branch)
            db.session.commit()
            self.branch_id = branch.id

            user = User(username="concurrent_user", branch_id=self.branch_id, is_active=True)
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id

            product = Product(branch_id=self.branch_id, name="Concurrent Product", price_cents=1000, quantity=5)
            db.session.add(product)
            db.session.commit()
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _credit_sale(self, payment_cents=100_000, months=1):
        with self.app.app_context():
            sale = create_transaction(
                type="SALE",
                from_branch_id=self.branch_id,
                items=[LineItem(product_id=self.product_id, quantity=1, price_cents=payment_cents * months)],
                actor_user_id=self.user_id,
                payment_type="INSTALLMENT",
            )
            rows = credit_service.attach_schedules(
                sale.id,
                [ScheduleRow(month=m, payment_cents=payment_cents) for m in range(1, months + 1)],
            )
            return [row.id for row in rows]

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_sales_never_oversell(self):
        successes = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    sale = create_transaction(
                        type="SALE",
                        from_branch_id=self.branch_id,
                        items=[LineItem(product_id=self.product_id, quantity=1)],
                        actor_user_id=self.user_id,
                    )
                    with lock:
                        successes.append(sale.id)
                except (InsufficientStockError, ConflictError) as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 10)

        self.assertEqual(len(successes), 5)
        self.assertEqual(len(errors), 5)
        with self.app.app_context():
            product = db.session.get(Product, self.product_id)
            self.assertEqual(product.quantity, 0)
            self.assertEqual(product.status, "SOLD")
            self.assertEqual(db.session.query(StockHistoryEntry).count(), 5)

    def test_concurrent_cash_repayments_sum(self):
        schedule_ids = [self._credit_sale()[0] for _ in range(4)]
        errors = []
        lock = threading.Lock()

        def make_worker(schedule_id):
            def worker():
                with self.app.app_context():
                    try:
                        credit_service.update_schedule(
                            schedule_id,
                            actor_user_id=self.user_id,
                            amount_delta_cents=25_000,
                            paid_channel="CASH",
                        )
                    except Exception as exc:
                        with lock:
                            errors.append(exc)
                    finally:
                        db.session.remove()
            return worker

        self._run_threads([make_worker(sid) for sid in schedule_ids])

        self.assertFalse(errors)
        with self.app.app_context():
            branch = db.session.get(Branch, self.branch_id)
            self.assertEqual(branch.cash_balance_cents, 100_000)
            self.assertEqual(db.session.query(PaymentRepayment).count(), 4)

    def test_same_absolute_amount_posts_once(self):
        schedule_id = self._credit_sale()[0]
        outcomes = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    credit_service.update_schedule(
                        schedule_id,
                        actor_user_id=self.user_id,
                        paid_amount_cents=60_000,
                    )
                    result = "ok"
                except ConflictError:
                    result = "conflict"
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(result)

        self._run_threads([worker] * 6)

        self.assertEqual(len(outcomes), 6)
        self.assertIn("ok", outcomes)
        with self.app.app_context():
            schedule = db.session.get(PaymentSchedule, schedule_id)
            branch = db.session.get(Branch, self.branch_id)
            self.assertEqual(schedule.paid_amount_cents, 60_000)
            self.assertEqual(branch.cash_balance_cents, 60_000)
            self.assertEqual(db.session.query(PaymentRepayment).count(), 1)

    def test_resent_deltas_after_conflict_all_land(self):
        schedule_id = self._credit_sale()[0]
        failures = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    for _ in range(50):
                        try:
                            credit_service.update_schedule(
                                schedule_id,
                                actor_user_id=self.user_id,
                                amount_delta_cents=10_000,
                            )
                            return
                        except ConflictError:
                            db.session.remove()
                    with lock:
                        failures.append("gave up")
                finally:
                    db.session.remove()

        self._run_threads([worker] * 5)

        self.assertFalse(failures)
        with self.app.app_context():
            schedule = db.session.get(PaymentSchedule, schedule_id)
            self.assertEqual(schedule.paid_amount_cents, 50_000)
            self.assertEqual(db.session.get(Branch, self.branch_id).cash_balance_cents, 50_000)
            self.assertEqual(db.session.query(PaymentRepayment).count(), 5)


if __name__ == "__main__":
    unittest.main()
