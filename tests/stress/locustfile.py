"""
Custody ledger load testing with Locust

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5000 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Seed data first (from backend/):
    python -m flask master add-warehouse --title "Load Store" --stock 100000
    python -m flask master add-person --title "Load Tester"

and point the users at it with LOAD_WAREHOUSE_ID / LOAD_PERSON_ID.

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%
"""

import os
import time
import uuid
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

WAREHOUSE_ID = int(os.environ.get("LOAD_WAREHOUSE_ID", "1"))
PERSON_ID = int(os.environ.get("LOAD_PERSON_ID", "1"))
PERFORMER = os.environ.get("LOAD_PERFORMER", "locust")


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
            p99_idx = int(count * 0.99)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
                "p99_ms": times[p99_idx] if p99_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class CustodyClient(HttpUser):
    """Base user; every request names the same performer."""
    wait_time = between(0.5, 2)
    abstract = True

    def get_headers(self) -> Dict:
        return {"Content-Type": "application/json", "X-Performed-By": PERFORMER}


class BrowsingUser(CustodyClient):
    """
    Read-mostly traffic: holdings lookups, audit trail, health.
    """
    weight = 3

    @task(5)
    def person_holdings(self):
        start = time.time()
        response = self.client.get(
            f"/api/custody/people/{PERSON_ID}/holdings",
            headers=self.get_headers(),
            name="custody/holdings"
        )
        metrics.record("custody/holdings", (time.time() - start) * 1000, response.status_code in (200, 404))

    @task(3)
    def audit_events(self):
        start = time.time()
        response = self.client.get(
            "/api/audit-events",
            params={"entity_type": "Item", "limit": 50},
            headers=self.get_headers(),
            name="audit/list"
        )
        metrics.record("audit/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def integrity_report(self):
        start = time.time()
        response = self.client.get("/api/maintenance/integrity", name="maintenance/integrity")
        metrics.record("maintenance/integrity", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def health_check(self):
        """System health check."""
        start = time.time()
        response = self.client.get("/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class CustodyUser(CustodyClient):
    """
    Registers its own item, then cycles it between the warehouse and a person.
    """
    weight = 2

    item_id: Optional[int] = None
    assigned: bool = False

    def on_start(self):
        self.register_item()

    def register_item(self):
        start = time.time()
        response = self.client.post(
            "/api/custody/items",
            json={
                "title": "Load test laptop",
                "serial_number": f"LOAD-{uuid.uuid4().hex[:12]}",
                "warehouse_id": WAREHOUSE_ID,
            },
            headers=self.get_headers(),
            name="custody/register_item"
        )
        ok = response.status_code == 201
        metrics.record("custody/register_item", (time.time() - start) * 1000, ok)
        if ok:
            self.item_id = response.json().get("id")

    @task(4)
    def assign_or_return(self):
        """Alternate assign and return so the item never double-books."""
        if not self.item_id:
            return

        if not self.assigned:
            start = time.time()
            response = self.client.post(
                "/api/custody/assign",
                json={
                    "item_id": self.item_id,
                    "person_id": PERSON_ID,
                    "giving_warehouse_id": WAREHOUSE_ID,
                    "quantity": 1,
                },
                headers=self.get_headers(),
                name="custody/assign"
            )
            # 409 is a legitimate answer under contention (stock check / version conflict)
            metrics.record("custody/assign", (time.time() - start) * 1000, response.status_code in (201, 409))
            self.assigned = response.status_code == 201
            return

        start = time.time()
        response = self.client.post(
            "/api/custody/return",
            json={
                "item_id": self.item_id,
                "person_id": PERSON_ID,
                "receiving_warehouse_id": WAREHOUSE_ID,
                "quantity": 1,
            },
            headers=self.get_headers(),
            name="custody/return"
        )
        metrics.record("custody/return", (time.time() - start) * 1000, response.status_code in (201, 409))
        if response.status_code == 201:
            self.assigned = False

    @task(1)
    def add_stock(self):
        if not self.item_id:
            return
        start = time.time()
        response = self.client.post(
            "/api/custody/add-stock",
            json={"item_id": self.item_id, "receiving_warehouse_id": WAREHOUSE_ID, "quantity": 1},
            headers=self.get_headers(),
            name="custody/add_stock"
        )
        metrics.record("custody/add_stock", (time.time() - start) * 1000, response.status_code in (201, 409))


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

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        p95_threshold = 500 if name.startswith(("audit/", "maintenance/", "system/")) or "holdings" in name else 1000
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads (holdings/audit/integrity/health): P95 < 500ms, Error rate < 1%")
        print("  - Writes (register/assign/return/add_stock): P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
