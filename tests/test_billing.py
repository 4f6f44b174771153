import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from parking_engine.billing import HourlyMinimumBilling, ProratedBilling, elapsed, get_policy
from parking_engine.models import Rates, Session, VehicleClass

RATES = Rates(car_hourly_rate=Decimal("3.00"), motorcycle_hourly_rate=Decimal("2.00"))
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestElapsed(unittest.TestCase):

    def test_minutes_and_seconds(self):
        self.assertEqual(elapsed(T0, T0 + timedelta(minutes=30, seconds=15)), (30, 15))

    def test_negative_elapsed_clamped_to_zero(self):
        self.assertEqual(elapsed(T0, T0 - timedelta(minutes=5)), (0, 0))

    def test_naive_datetimes_treated_as_utc(self):
        naive = datetime(2024, 3, 1, 12, 0)
        self.assertEqual(elapsed(naive, T0 + timedelta(minutes=2)), (2, 0))


class TestProratedBilling(unittest.TestCase):

    def setUp(self):
        self.policy = ProratedBilling()

    def test_half_hour_car(self):
        self.assertEqual(self.policy.cost(30, VehicleClass.CAR, RATES), Decimal("1.50"))

    def test_zero_minutes_costs_nothing(self):
        self.assertEqual(self.policy.cost(0, VehicleClass.CAR, RATES), Decimal("0.00"))

    def test_negative_minutes_costs_nothing(self):
        self.assertEqual(self.policy.cost(-10, VehicleClass.CAR, RATES), Decimal("0.00"))

    def test_motorcycle_rate_and_rounding(self):
        # 2.00 * 1 / 60 = 0.0333...
        self.assertEqual(self.policy.cost(1, VehicleClass.MOTORCYCLE, RATES), Decimal("0.03"))
        self.assertEqual(self.policy.cost(90, VehicleClass.MOTORCYCLE, RATES), Decimal("3.00"))

    def test_monotonic_in_elapsed_time(self):
        costs = [self.policy.cost(m, VehicleClass.MOTORCYCLE, RATES) for m in range(0, 600)]
        self.assertEqual(costs, sorted(costs))

    def test_idempotent(self):
        first = self.policy.cost(47, VehicleClass.CAR, RATES)
        second = self.policy.cost(47, VehicleClass.CAR, RATES)
        self.assertEqual(first, second)

    def test_recompute_returns_new_session(self):
        session = Session(license_plate="ABC-1234", phone_number="(11) 98765-4321", entry_time=T0)
        updated = self.policy.recompute(session, VehicleClass.CAR, RATES, T0 + timedelta(minutes=30, seconds=9))

        self.assertIsNot(updated, session)
        self.assertEqual(session.accrued_cost, Decimal("0.00"))
        self.assertEqual(updated.elapsed_minutes, 30)
        self.assertEqual(updated.elapsed_seconds, 9)
        self.assertEqual(updated.accrued_cost, Decimal("1.50"))

    def test_recompute_with_entry_in_future(self):
        session = Session(license_plate="ABC-1234", phone_number="11987654321", entry_time=T0)
        updated = self.policy.recompute(session, VehicleClass.CAR, RATES, T0 - timedelta(hours=1))
        self.assertEqual(updated.elapsed_minutes, 0)
        self.assertEqual(updated.accrued_cost, Decimal("0.00"))


class TestHourlyMinimumBilling(unittest.TestCase):

    def setUp(self):
        self.policy = HourlyMinimumBilling()

    def test_minimum_one_hour(self):
        self.assertEqual(self.policy.cost(0, VehicleClass.CAR, RATES), Decimal("3.00"))
        self.assertEqual(self.policy.cost(60, VehicleClass.CAR, RATES), Decimal("3.00"))

    def test_rounds_up_to_next_hour(self):
        self.assertEqual(self.policy.cost(61, VehicleClass.CAR, RATES), Decimal("6.00"))
        self.assertEqual(self.policy.cost(121, VehicleClass.MOTORCYCLE, RATES), Decimal("6.00"))

    def test_monotonic_in_elapsed_time(self):
        costs = [self.policy.cost(m, VehicleClass.CAR, RATES) for m in range(0, 600)]
        self.assertEqual(costs, sorted(costs))


class TestGetPolicy(unittest.TestCase):

    def test_known_models(self):
        self.assertIsInstance(get_policy("prorated"), ProratedBilling)
        self.assertIsInstance(get_policy("hourly"), HourlyMinimumBilling)

    def test_unknown_model(self):
        with self.assertRaises(ValueError):
            get_policy("daily")
