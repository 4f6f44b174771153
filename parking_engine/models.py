from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from parking_engine.plates import normalize_phone, normalize_plate

ZERO = Decimal("0.00")


class VehicleClass(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"


class Session(BaseModel):
    """Пребывание одного ТС на одном месте.

    Неизменяемый объект: каждый пересчёт создаёт новую копию через
    ``model_copy``, поэтому читатели никогда не видят частично обновлённую запись.
    Долговременно хранятся только ``entry_time`` и итоговая стоимость.
    """
    model_config = ConfigDict(frozen=True)

    license_plate: str
    phone_number: str
    entry_time: datetime
    elapsed_minutes: int = 0
    elapsed_seconds: int = 0
    accrued_cost: Decimal = ZERO

    @property
    def normalized_plate(self) -> str:
        return normalize_plate(self.license_plate)

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.phone_number)


class Spot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    vehicle_class: VehicleClass
    session: Optional[Session] = None

    @property
    def is_occupied(self) -> bool:
        return self.session is not None


class Rates(BaseModel):
    """Снимок тарифов (за час) для обоих типов ТС"""
    model_config = ConfigDict(frozen=True)

    car_hourly_rate: Decimal
    motorcycle_hourly_rate: Decimal

    def for_class(self, vehicle_class: VehicleClass) -> Decimal:
        if vehicle_class == VehicleClass.CAR:
            return self.car_hourly_rate
        return self.motorcycle_hourly_rate


class SessionRecord(BaseModel):
    """Активная сессия в том виде, в каком её хранит внешнее хранилище"""
    spot_id: int
    license_plate: str
    phone_number: str
    vehicle_type: VehicleClass
    entry_time: datetime


class SessionHistory(BaseModel):
    spot_id: int
    license_plate: str
    vehicle_type: VehicleClass
    entry_time: datetime
    exit_time: Optional[datetime] = None
    is_active: bool
    cost: Optional[Decimal] = None


class Receipt(BaseModel):
    spot_id: int
    vehicle_class: VehicleClass
    license_plate: str
    phone_number: str
    entry_time: datetime
    exit_time: datetime
    elapsed_minutes: int
    cost: Decimal


class ParkRequest(BaseModel):
    vehicle_type: VehicleClass
    license_plate: str
    phone_number: str


class RatesUpdate(BaseModel):
    car_hourly_rate: Decimal
    motorcycle_hourly_rate: Decimal
