"""
FreightDesk Load Testing with Locust

Issue tokens first (from the backend directory):
    python -m flask users issue-token <customer id>
    python -m flask users issue-token <admin id>

Run with:
    FREIGHTDESK_CUSTOMER_TOKEN=... FREIGHTDESK_ADMIN_TOKEN=... \
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%
- After the run, `flask ledger reconcile` reports every row paired
"""

import os
import random
import time
import uuid
from typing import Dict, List

from locust import HttpUser, between, events, task


CUSTOMER_TOKEN = os.environ.get("FREIGHTDESK_CUSTOMER_TOKEN", "")
ADMIN_TOKEN = os.environ.get("FREIGHTDESK_ADMIN_TOKEN", "")


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    def __init__(self):
        self.response_times: Dict[str, List[float]] = {}
        self.error_counts: Dict[str, int] = {}

    def record(self, name: str, started: float, success: bool):
        self.response_times.setdefault(name, []).append((time.time() - started) * 1000)
        self.error_counts.setdefault(name, 0)
        if not success:
            self.error_counts[name] += 1

    def get_summary(self) -> Dict:
        summary = {}
        for name, times in self.response_times.items():
            times = sorted(times)
            count = len(times)
            summary[name] = {
                "count": count,
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / count * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[min(int(count * 0.95), count - 1)],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class FreightDeskUser(HttpUser):
    wait_time = between(0.5, 2)
    abstract = True
    token = ""

    def get_headers(self) -> Dict:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self.token}"}


class CustomerUser(FreightDeskUser):
    """Prices quotes, books orders, and cancels some of them twice."""
    weight = 3
    token = CUSTOMER_TOKEN

    def on_start(self):
        self.placed: List[int] = []

    @task(5)
    def price_quotes(self):
        quotes = [{"totalCharge": random.randint(50, 900), "baseCharge": 40} for _ in range(5)]
        start = time.time()
        response = self.client.post("/api/pricing/quote", json={"quotes": quotes},
                                    headers=self.get_headers(), name="pricing/quote")
        metrics.record("pricing/quote", start, response.status_code == 200)

    @task(3)
    def place_order(self):
        start = time.time()
        response = self.client.post(
            "/api/orders/place",
            json={"quote": {"totalCharge": random.randint(60, 600), "orderId": f"LT-{uuid.uuid4().hex[:10]}"}},
            headers=self.get_headers(),
            name="orders/place",
        )
        metrics.record("orders/place", start, response.status_code == 201)
        if response.status_code == 201:
            self.placed.append(response.json()["data"]["order"]["id"])

    @task(2)
    def double_cancel(self):
        """A repeated cancel must report already_refunded, never a second refund."""
        if not self.placed:
            return
        order_id = self.placed.pop(0)
        for name in ("orders/cancel", "orders/cancel_repeat"):
            start = time.time()
            response = self.client.post("/api/orders/cancel", json={"order_id": order_id, "reason": "Load test"},
                                        headers=self.get_headers(), name=name)
            metrics.record(name, start, response.status_code in (200, 502))

    @task(4)
    def list_transactions(self):
        start = time.time()
        response = self.client.get("/api/balance/transactions", params={"limit": 50},
                                   headers=self.get_headers(), name="balance/transactions")
        metrics.record("balance/transactions", start, response.status_code == 200)


class AdminUser(FreightDeskUser):
    weight = 1
    token = ADMIN_TOKEN

    @task(3)
    def summary(self):
        start = time.time()
        response = self.client.get("/api/analytics/summary", headers=self.get_headers(), name="analytics/summary")
        metrics.record("analytics/summary", start, response.status_code == 200)

    @task(1)
    def unpaired(self):
        start = time.time()
        response = self.client.get("/api/admin/ledger/unpaired", headers=self.get_headers(), name="ledger/unpaired")
        ok = response.status_code == 200 and response.json().get("count") == 0
        metrics.record("ledger/unpaired", start, ok)

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/api/health", name="system/health")
        metrics.record("system/health", start, response.status_code == 200)


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)
    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    all_pass = True
    for name, stats in sorted(metrics.get_summary().items()):
        p95_threshold = 1000 if name.startswith("orders/") else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        all_pass = all_pass and passed
        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
              f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{'PASS' if passed else 'FAIL'}]")

    print("=" * 80)
    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some endpoints exceeded thresholds")
    if not all_pass:
        environment.process_exit_code = 1
