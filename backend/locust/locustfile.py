"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags dispatch   # Race admins for one driver
  locust -f locustfile.py --tags webhook    # Replay gateway callbacks
  locust -f locustfile.py --tags edge       # Test bad input
  locust -f locustfile.py                   # All tests

Admin scenarios log in with LOCUST_ADMIN_EMAIL / LOCUST_ADMIN_PASSWORD,
the same account the API creates from ADMIN_EMAIL / ADMIN_PASSWORD.
"""

import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

ADMIN_EMAIL = os.getenv("LOCUST_ADMIN_EMAIL", "admin@carrental.local")
ADMIN_PASSWORD = os.getenv("LOCUST_ADMIN_PASSWORD", "adminpassword")

# Shared state
CAR_IDS = []
RACE = {"driver_id": None, "booking_ids": []}
PAID_PIDX = []


def random_email():
    return f"load_{random.randint(10000, 99999)}@test.com"


def checkout_payload(car_id):
    start = datetime.now(timezone.utc) + timedelta(days=random.randint(1, 30))
    return {
        "car_id": car_id,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=2)).isoformat(),
        "address": "Load Test Street",
        "email": "load@test.com",
        "contact": "9800000000",
        "total_amount": 5000,
        "location": {"lat": 27.7, "lng": 85.3},
    }


def login(client, email, password):
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    if resp.status_code == 200:
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return {}


def register_customer(client):
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "name": "Load Tester",
        "password": "test12345",
    })
    return login(client, email, "test12345")


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: admin seeds one driver and a batch of bookings to race for it")
    print("=" * 60)


class DispatchRaceUser(HttpUser):
    """
    TEST 1: Concurrency - many admins, one driver, many bookings

    Run: locust -f locustfile.py --tags dispatch -u 50 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM bookings WHERE driver_id = X AND driver_assigned;
    Should be ≤ 1 at any moment, and the driver's history never holds two
    open entries.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = login(self.client, ADMIN_EMAIL, ADMIN_PASSWORD)
        if not self.headers or RACE["driver_id"]:
            return

        resp = self.client.post("/api/v1/drivers/", json={
            "name": "Race Driver",
            "license_number": f"RACE-{random.randint(10000, 99999)}",
            "phone": "9800000000",
            "email": "race@test.com",
            "address": "Kathmandu",
            "date_of_birth": "1990-01-01",
            "experience": 3,
        }, headers=self.headers)
        if resp.status_code != 201:
            return
        RACE["driver_id"] = resp.json()["id"]

        car = self.client.post("/api/v1/cars/", json={
            "name": "Race Car", "brand": "Load", "price_per_day": 1000,
        }, headers=self.headers)
        if car.status_code != 201:
            return
        for _ in range(20):
            booking = self.client.post(
                "/api/v1/bookings/", json=checkout_payload(car.json()["id"]), headers=self.headers
            )
            if booking.status_code == 201:
                RACE["booking_ids"].append(booking.json()["id"])
        print(f"\n✓ Driver {RACE['driver_id']} vs {len(RACE['booking_ids'])} bookings\n")

    @tag("dispatch")
    @task(5)
    def assign_contested_driver(self):
        """Everybody tries to put the same driver on a different booking."""
        if not RACE["driver_id"] or not RACE["booking_ids"]:
            return

        booking_id = random.choice(RACE["booking_ids"])
        with self.client.put(
            f"/api/v1/drivers/{RACE['driver_id']}/assign/{booking_id}",
            headers=self.headers,
            name="/api/v1/drivers/{id}/assign/{booking_id}",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 409):
                resp.success()  # 409: DriverUnavailable or booking already has a driver
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("dispatch")
    @task(1)
    def release_driver(self):
        if not RACE["driver_id"]:
            return
        with self.client.put(
            f"/api/v1/drivers/{RACE['driver_id']}/complete-assignment",
            headers=self.headers,
            name="/api/v1/drivers/{id}/complete-assignment",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 409):
                resp.success()  # 409: already released by someone else
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class WebhookReplayUser(HttpUser):
    """
    TEST 2: Idempotency - the gateway retries the same callback

    Run: locust -f locustfile.py --tags webhook -u 50 -r 25 --run-time 30s

    Needs bookings with khalti_pidx set (initiate against the Khalti sandbox
    first, or seed PAID_PIDX). Every call must answer 200, and
    payment_events_total{source="webhook",outcome="confirmed"} must not
    exceed the number of distinct pidx values.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        pidx_list = os.getenv("LOCUST_PIDX", "")
        for pidx in filter(None, pidx_list.split(",")):
            if pidx not in PAID_PIDX:
                PAID_PIDX.append(pidx)

    @tag("webhook")
    @task
    def replay_completed(self):
        pidx = random.choice(PAID_PIDX) if PAID_PIDX else f"unknown-{random.randint(1, 100)}"
        with self.client.post(
            "/api/v1/payment/khalti-webhook",
            json={"pidx": pidx, "status": "Completed", "transaction_id": f"TXN-{pidx}"},
            catch_response=True,
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            else:
                resp.failure(f"Webhook must always answer 200, got {resp.status_code}")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = register_customer(self.client)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_car_id(self):
        with self.client.post("/api/v1/bookings/", json=checkout_payload(999999),
                              headers=self.headers, catch_response=True) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def missing_location(self):
        payload = checkout_payload(1)
        payload.pop("location")
        with self.client.post("/api/v1/bookings/", json=payload,
                              headers=self.headers, catch_response=True) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def reversed_dates(self):
        payload = checkout_payload(1)
        payload["start_date"], payload["end_date"] = payload["end_date"], payload["start_date"]
        with self.client.post("/api/v1/bookings/", json=payload,
                              headers=self.headers, catch_response=True) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def garbage_webhook(self):
        with self.client.post("/api/v1/payment/khalti-webhook", data="not json at all",
                              headers={"Content-Type": "application/json"},
                              catch_response=True) as resp:
            self._expect(resp, [200])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/", json=checkout_payload(1),
                              catch_response=True) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def customer_on_admin_route(self):
        with self.client.get("/api/v1/admin/bookings", headers=self.headers,
                             catch_response=True) as resp:
            self._expect(resp, [403])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

      - Mostly browsing cars
      - Some checkouts and cancellations
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = register_customer(self.client)
        self.my_bookings = []

    @task(50)
    def browse_cars(self):
        resp = self.client.get("/api/v1/cars/?page=1&page_size=20")
        if resp.status_code == 200:
            for car in resp.json().get("cars", []):
                if car["id"] not in CAR_IDS:
                    CAR_IDS.append(car["id"])

    @task(20)
    def view_car(self):
        if CAR_IDS:
            self.client.get(f"/api/v1/cars/{random.choice(CAR_IDS)}", name="/api/v1/cars/{id}")

    @task(10)
    def checkout(self):
        if CAR_IDS and self.headers:
            resp = self.client.post("/api/v1/bookings/",
                                    json=checkout_payload(random.choice(CAR_IDS)),
                                    headers=self.headers)
            if resp.status_code == 201:
                self.my_bookings.append(resp.json()["id"])

    @task(5)
    def my_bookings_list(self):
        if self.headers:
            self.client.get("/api/v1/bookings/", headers=self.headers)

    @task(2)
    def cancel(self):
        if self.my_bookings:
            booking_id = self.my_bookings.pop()
            self.client.put(f"/api/v1/bookings/{booking_id}/cancel", headers=self.headers,
                            name="/api/v1/bookings/{id}/cancel")

    @task(1)
    def health_check(self):
        self.client.get("/health")
