"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Test over-admission
  locust -f locustfile.py --tags read         # Test live recomputation under load
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Set ADMIN_API_KEY in the environment to the deployment's admin key so the
setup step can provision the contention zone.
"""

import os
import random
import uuid
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

ADMIN_HEADERS = {"X-Admin-Key": os.environ.get("ADMIN_API_KEY", "")}

# Shared state
ZONE_IDS = []
CONTENTION_ZONE_ID = None
CONTENTION_CAPACITY = 10


def random_user_id():
    return f"load-{uuid.uuid4().hex[:12]}"


def window(start_minutes, length_minutes):
    start = datetime.now(timezone.utc) + timedelta(minutes=start_minutes)
    return start.isoformat(), (start + timedelta(minutes=length_minutes)).isoformat()


def zone_payload(name, capacity, slot_count=0):
    return {
        "name": name,
        "boundary": [
            {"lat": 51.999, "lng": 3.999},
            {"lat": 51.999, "lng": 4.001},
            {"lat": 52.001, "lng": 4.001},
            {"lat": 52.001, "lng": 3.999},
        ],
        "capacity": capacity,
        "slots": [{"slot_id": f"S{i}", "tag": f"S-{i}"} for i in range(slot_count)],
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: zones are provisioned by the first user of each class "
          f"(contention capacity {CONTENTION_CAPACITY})")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 users -> 10 units

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM reservations
      WHERE zone_id = X AND status IN ('pending', 'active');
    Should be <= 10, and no user should have two live rows in the zone.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = {"X-User-Id": random_user_id()}

        if not CONTENTION_ZONE_ID:
            resp = self.client.post(
                "/api/v1/zones/",
                json=zone_payload(f"contention-{uuid.uuid4().hex[:6]}", CONTENTION_CAPACITY),
                headers=ADMIN_HEADERS,
            )
            if resp.status_code == 201:
                globals()["CONTENTION_ZONE_ID"] = resp.json()["id"]
                print(f"\nCreated zone {CONTENTION_ZONE_ID} with {CONTENTION_CAPACITY} units\n")

    @tag("contention")
    @task
    def request_last_units(self):
        """All users fight for the same units in the same window."""
        if not CONTENTION_ZONE_ID:
            return

        start, end = window(30, 60)
        with self.client.post(
            "/api/v1/holds/",
            json={"zone_id": CONTENTION_ZONE_ID, "window_start": start, "window_end": end},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: full, or this user already holds one
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ReadUser(HttpUser):
    """
    TEST 2: Reads - availability is recomputed on every call

    Run: locust -f locustfile.py --tags read -u 100 -r 20 --run-time 60s

    Compare avg / P95 / P99 latency of summaries with and without
    concurrent ContentionUser traffic.
    """
    wait_time = between(0.1, 0.5)

    @tag("read")
    @task(10)
    def list_zones(self):
        resp = self.client.get("/api/v1/zones/")
        if resp.status_code == 200:
            for zone in resp.json():
                if zone["zone_id"] not in ZONE_IDS:
                    ZONE_IDS.append(zone["zone_id"])

    @tag("read")
    @task(5)
    def zone_summary(self):
        if ZONE_IDS:
            self.client.get(
                f"/api/v1/zones/{random.choice(ZONE_IDS)}/summary",
                name="/api/v1/zones/{id}/summary",
            )

    @tag("read")
    @task(3)
    def slot_statuses(self):
        if ZONE_IDS:
            self.client.get(
                f"/api/v1/zones/{random.choice(ZONE_IDS)}/slots",
                name="/api/v1/zones/{id}/slots",
            )

    @tag("read")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = {"X-User-Id": random_user_id()}

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_zone(self):
        start, end = window(30, 60)
        with self.client.post(
            "/api/v1/holds/",
            json={"zone_id": 999999, "window_start": start, "window_end": end},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def window_in_the_past(self):
        start, end = window(-120, 60)
        with self.client.post(
            "/api/v1/holds/",
            json={"zone_id": 1, "window_start": start, "window_end": end},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def inverted_window(self):
        end, start = window(30, 60)
        with self.client.post(
            "/api/v1/holds/",
            json={"zone_id": 1, "window_start": start, "window_end": end},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/holds/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_identity(self):
        start, end = window(30, 60)
        with self.client.post(
            "/api/v1/holds/",
            json={"zone_id": 1, "window_start": start, "window_end": end},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def cancel_someone_elses_hold(self):
        with self.client.delete(
            f"/api/v1/holds/{random.randint(1, 1000)}",
            headers=self.headers,
            name="/api/v1/holds/{id}",
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing availability
      - Some holds, arrivals, cancels and check-outs
      - Rare zone provisioning
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-User-Id": random_user_id()}
        self.live = []

    @task(50)
    def browse_zones(self):
        resp = self.client.get("/api/v1/zones/")
        if resp.status_code == 200:
            for zone in resp.json():
                if zone["zone_id"] not in ZONE_IDS:
                    ZONE_IDS.append(zone["zone_id"])

    @task(10)
    def request_hold(self):
        if not ZONE_IDS:
            return
        start, end = window(random.randint(5, 240), random.randint(15, 120))
        resp = self.client.post(
            "/api/v1/holds/",
            json={"zone_id": random.choice(ZONE_IDS), "window_start": start, "window_end": end},
            headers=self.headers,
        )
        if resp.status_code == 201:
            self.live.append(resp.json()["reservation_id"])

    @task(5)
    def arrive_now(self):
        if not ZONE_IDS:
            return
        start, end = window(0, random.randint(15, 90))
        resp = self.client.post(
            "/api/v1/holds/",
            json={"zone_id": random.choice(ZONE_IDS), "window_start": start, "window_end": end, "arrival": True},
            headers=self.headers,
        )
        if resp.status_code in (200, 201):
            self.live.append(resp.json()["reservation_id"])

    @task(4)
    def cancel_or_checkout(self):
        if not self.live:
            return
        reservation_id = self.live.pop(random.randrange(len(self.live)))
        if random.random() < 0.5:
            self.client.delete(
                f"/api/v1/holds/{reservation_id}", headers=self.headers, name="/api/v1/holds/{id}"
            )
        else:
            self.client.post(
                f"/api/v1/holds/{reservation_id}/checkout",
                headers=self.headers,
                name="/api/v1/holds/{id}/checkout",
            )

    @task(1)
    def create_zone(self):
        resp = self.client.post(
            "/api/v1/zones/",
            json=zone_payload(f"zone-{uuid.uuid4().hex[:8]}", random.randint(5, 50), slot_count=5),
            headers=ADMIN_HEADERS,
        )
        if resp.status_code == 201:
            ZONE_IDS.append(resp.json()["id"])
