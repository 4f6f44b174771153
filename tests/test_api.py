import unittest
from decimal import Decimal

from fastapi.testclient import TestClient

from parking_engine.main import create_app
from parking_engine.models import Rates
from tests.fakes import FakeClock, InMemoryRateStore, InMemorySessionStore

HEADERS = {"X-User-Id": "user-1"}
CAR = {"vehicle_type": "car", "license_plate": "ABC-1234", "phone_number": "(11) 98765-4321"}


class TestParkingAPI(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.sessions = InMemorySessionStore()
        self.rate_store = InMemoryRateStore(Rates(car_hourly_rate=Decimal("3.00"),
                                                  motorcycle_hourly_rate=Decimal("2.00")))
        app = create_app(session_store=self.sessions, rate_store=self.rate_store, clock=self.clock,
                         billing_model="prorated", car_spots=2, motorcycle_spots=1,
                         tick_interval=3600, resync_interval=3600)
        self.client = TestClient(app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def test_park_and_status(self):
        response = self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["spot_id"], 1)
        self.assertEqual(data["status"], "occupied")
        self.assertEqual(data["current_vehicle"]["cost"], 0.0)

        status = self.client.get("/api/parking/status", headers=HEADERS).json()
        self.assertEqual(status["available"], {"car": 1, "motorcycle": 1})
        self.assertEqual(len(status["data"]), 3)

        bikes = self.client.get("/api/parking/status", params={"vehicle_type": "motorcycle"}, headers=HEADERS)
        self.assertEqual([s["spot_id"] for s in bikes.json()["data"]], [3])

    def test_duplicate_plate(self):
        self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)

        response = self.client.post("/api/vehicle/park", json=dict(CAR, vehicle_type="motorcycle",
                                                                    license_plate="ABC1234"), headers=HEADERS)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate_plate")
        self.assertEqual(response.json()["spot_id"], 1)

    def test_invalid_plate(self):
        response = self.client.post("/api/vehicle/park", json=dict(CAR, license_plate="AB1234"), headers=HEADERS)

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_user_header_required(self):
        response = self.client.get("/api/parking/status")
        self.assertEqual(response.status_code, 422)

    def test_release(self):
        self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)
        self.clock.advance(minutes=30)

        response = self.client.post("/api/spots/1/release", headers=HEADERS)

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["cost"], 1.5)
        self.assertEqual(data["cost_display"], "R$ 1.50")
        self.assertEqual(data["duration_minutes"], 30)

        again = self.client.post("/api/spots/1/release", headers=HEADERS)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "already_empty")

    def test_release_unknown_spot(self):
        response = self.client.post("/api/spots/42/release", headers=HEADERS)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_store_unavailable(self):
        self.client.get("/api/parking/status", headers=HEADERS)
        self.sessions.fail = True

        response = self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "store_unavailable")

    def test_search(self):
        self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)

        found = self.client.get("/api/vehicle/search", params={"plate": "abc1234"}, headers=HEADERS).json()
        missing = self.client.get("/api/vehicle/search", params={"plate": "ZZZ0000"}, headers=HEADERS).json()

        self.assertEqual([s["spot_id"] for s in found["data"]], [1])
        self.assertEqual(missing["data"], [])

    def test_rates(self):
        self.client.post("/api/vehicle/park", json=CAR, headers=HEADERS)
        self.clock.advance(minutes=60)

        response = self.client.put("/api/settings/rates", json={"car_hourly_rate": 5, "motorcycle_hourly_rate": 2},
                                   headers=HEADERS)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["car_hourly_rate"], 5.0)
        status = self.client.get("/api/parking/status", headers=HEADERS).json()
        self.assertEqual(status["data"][0]["current_vehicle"]["cost"], 5.0)
        self.assertEqual(self.client.get("/api/settings/rates", headers=HEADERS).json()["data"],
                         {"car_hourly_rate": 5.0, "motorcycle_hourly_rate": 2.0})

    def test_rates_out_of_bounds(self):
        response = self.client.put("/api/settings/rates", json={"car_hourly_rate": 0, "motorcycle_hourly_rate": 2},
                                   headers=HEADERS)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_sync_and_summary(self):
        self.client.get("/api/parking/status", headers=HEADERS)
        self.sessions.add_active("user-1", 2, "XYZ9999", entry_time=self.clock.now)

        synced = self.client.post("/api/sync", headers=HEADERS).json()
        summary = self.client.get("/api/stats/summary", headers=HEADERS).json()

        self.assertEqual(synced["data"]["occupied_spots"], 1)
        self.assertEqual(summary["data"]["active_sessions"], 1)

    def test_close_context(self):
        self.client.get("/api/parking/status", headers=HEADERS)

        closed = self.client.delete("/api/context", headers=HEADERS).json()
        missing = self.client.delete("/api/context", headers=HEADERS).json()

        self.assertTrue(closed["data"]["closed"])
        self.assertFalse(missing["data"]["closed"])
