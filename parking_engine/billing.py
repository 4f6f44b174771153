"""Расчёт времени стоянки и стоимости.

Обе политики являются чистыми функциями от (минуты, тип ТС, тарифы): повторный
расчёт с теми же входными данными всегда даёт тот же результат.
"""
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

from parking_engine.config import BILLING_MODEL
from parking_engine.models import Rates, Session, VehicleClass

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo возвращает naive datetime в UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed(entry_time: datetime, now: datetime) -> Tuple[int, int]:
    """Полные минуты и оставшиеся секунды; отрицательное время считается нулём"""
    total = (as_utc(now) - as_utc(entry_time)).total_seconds()
    if total < 0:
        logger.debug(f"Entry time {entry_time} is ahead of clock {now}, clamping to zero")
        total = 0
    minutes, seconds = divmod(int(total), 60)
    return minutes, seconds


class BillingPolicy(ABC):
    name = "base"

    @abstractmethod
    def cost(self, elapsed_minutes: int, vehicle_class: VehicleClass, rates: Rates) -> Decimal:
        ...

    def recompute(self, session: Session, vehicle_class: VehicleClass, rates: Rates,
                  now: datetime) -> Session:
        """Новая копия сессии с пересчитанными производными полями"""
        minutes, seconds = elapsed(session.entry_time, now)
        return session.model_copy(update={
            "elapsed_minutes": minutes,
            "elapsed_seconds": seconds,
            "accrued_cost": self.cost(minutes, vehicle_class, rates),
        })


class ProratedBilling(BillingPolicy):
    """Поминутная оплата: тариф * минуты / 60, без минимума"""
    name = "prorated"

    def cost(self, elapsed_minutes: int, vehicle_class: VehicleClass, rates: Rates) -> Decimal:
        minutes = max(int(elapsed_minutes), 0)
        amount = rates.for_class(vehicle_class) * minutes / 60
        return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class HourlyMinimumBilling(BillingPolicy):
    """Почасовая оплата с округлением вверх, минимум один час"""
    name = "hourly"

    def cost(self, elapsed_minutes: int, vehicle_class: VehicleClass, rates: Rates) -> Decimal:
        rate = rates.for_class(vehicle_class)
        hours = math.ceil(max(int(elapsed_minutes), 0) / 60)
        return max(hours * rate, rate).quantize(CENTS, rounding=ROUND_HALF_UP)


POLICIES = {
    ProratedBilling.name: ProratedBilling,
    HourlyMinimumBilling.name: HourlyMinimumBilling,
}


def get_policy(name: str = BILLING_MODEL) -> BillingPolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown billing model: {name}") from None
