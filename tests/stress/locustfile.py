"""
Branch Ledger Load Testing with Locust

Seed a branch, a cashier and a stocked product with the Flask CLI, issue a
token, then run:
    LEDGER_STRESS_TOKEN=<token> LEDGER_BRANCH_ID=1 LEDGER_PRODUCT_ID=1 \
        locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1% (insufficient stock and repayment conflicts are expected
  outcomes under contention and do not count as errors)

Afterwards `flask ledger reconcile` must report every branch OK.
"""

import os
import time
import random
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

STRESS_TOKEN = os.environ.get("LEDGER_STRESS_TOKEN")
BRANCH_ID = int(os.environ.get("LEDGER_BRANCH_ID", "1"))
PRODUCT_ID = int(os.environ.get("LEDGER_PRODUCT_ID", "1"))


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report metrics."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class LedgerUser(HttpUser):
    """
    Base ledger user carrying the pre-issued bearer token.
    """
    wait_time = between(0.5, 2)
    abstract = True

    token: Optional[str] = STRESS_TOKEN
    credit_sales: List[int] = []
    schedules: List[int] = []

    def get_headers(self) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def timed(self, name: str, method: str, url: str, ok=(200,), **kwargs):
        start = time.time()
        response = self.client.request(method, url, headers=self.get_headers(), name=name, **kwargs)
        metrics.record(name, (time.time() - start) * 1000, response.status_code in ok)
        return response


class BrowsingUser(LedgerUser):
    """
    Reads: transaction lists, stock history, condition statistics.
    """
    weight = 3

    @task(5)
    def list_transactions(self):
        self.timed("transactions/list", "GET", "/api/transactions", params={"branch_id": BRANCH_ID, "limit": 50})

    @task(3)
    def list_stock_history(self):
        self.timed("stock-history/list", "GET", "/api/transactions/stock-history", params={"product_id": PRODUCT_ID})

    @task(2)
    def condition_statistics(self):
        self.timed("condition-logs/statistics", "GET", "/api/condition-logs/statistics", params={"branch_id": BRANCH_ID})

    @task(1)
    def cash_reconciliation(self):
        self.timed("branches/reconciliation", "GET", f"/api/branches/{BRANCH_ID}/cash-reconciliation")

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class SalesUser(LedgerUser):
    """
    Competes for the same product: sales drain it, purchases refill it.
    """
    weight = 2

    @task(4)
    def create_sale(self):
        self.timed(
            "transactions/create_sale",
            "POST",
            "/api/transactions",
            ok=(201, 400),
            json={
                "type": "SALE",
                "from_branch_id": BRANCH_ID,
                "items": [{"product_id": PRODUCT_ID, "quantity": random.randint(1, 3)}],
                "payment_type": "CASH",
            },
        )

    @task(2)
    def create_purchase(self):
        self.timed(
            "transactions/create_purchase",
            "POST",
            "/api/transactions",
            ok=(201,),
            json={
                "type": "PURCHASE",
                "from_branch_id": BRANCH_ID,
                "items": [{"product_id": PRODUCT_ID, "quantity": random.randint(2, 6)}],
            },
        )

    @task(1)
    def create_credit_sale(self):
        response = self.timed(
            "transactions/create_credit",
            "POST",
            "/api/transactions",
            ok=(201, 400),
            json={
                "type": "SALE",
                "from_branch_id": BRANCH_ID,
                "items": [{"product_id": PRODUCT_ID, "quantity": 1, "credit_months": 3}],
                "payment_type": "INSTALLMENT",
            },
        )
        if response.status_code != 201:
            return

        transaction_id = response.json()["id"]
        response = self.timed(
            "payment-schedules/attach",
            "POST",
            f"/api/transactions/{transaction_id}/payment-schedules",
            ok=(201,),
            json={"rows": [{"month": m, "payment_cents": 1000} for m in (1, 2, 3)]},
        )
        if response.status_code == 201:
            self.schedules.extend(row["id"] for row in response.json()["payment_schedules"])


class RepaymentUser(LedgerUser):
    """
    Posts deltas against shared schedules; 409 means re-send.
    """
    weight = 2

    @task(3)
    def add_repayment(self):
        if not self.schedules:
            return
        schedule_id = random.choice(self.schedules[-10:])
        self.timed(
            "payment-schedules/add_delta",
            "PUT",
            f"/api/payment-schedules/{schedule_id}",
            ok=(200, 409),
            json={"amount_delta_cents": random.randint(100, 500), "paid_channel": random.choice(["CASH", "CARD"])},
        )

    @task(1)
    def list_repayments(self):
        self.timed("repayments/list", "GET", "/api/repayments", params={"branch_id": BRANCH_ID})


class ConditionUser(LedgerUser):
    """
    Defective/fixed round trips on the contended product.
    """
    weight = 1

    @task(2)
    def mark_defective(self):
        self.timed(
            "condition-logs/add_defective",
            "POST",
            "/api/condition-logs",
            ok=(201, 400),
            json={"product_id": PRODUCT_ID, "action_type": "DEFECTIVE", "quantity": 1},
        )

    @task(2)
    def mark_fixed(self):
        self.timed(
            "condition-logs/add_fixed",
            "POST",
            f"/api/condition-logs/mark-as-fixed/{PRODUCT_ID}",
            ok=(201, 400, 409),
            json={"quantity": 1},
        )


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<34} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 84)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 1000 if "create" in name or "add" in name or "attach" in name else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<34} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 84)
    print(f"{'TOTAL':<34} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 84)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads (list/get): P95 < 500ms, Error rate < 1%")
        print("  - Writes (create/add): P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
