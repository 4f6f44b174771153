"""Внешние хранилища: сессии парковки и тарифы пользователя.

Ядро работает только через интерфейсы ``SessionStore`` и ``RateConfigStore``;
реализации для MongoDB переводят ошибки pymongo в ``StoreUnavailable``.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from parking_engine.billing import as_utc
from parking_engine.config import DEFAULT_CAR_RATE, DEFAULT_MOTORCYCLE_RATE
from parking_engine.errors import AlreadyEmpty, StoreUnavailable
from parking_engine.models import Rates, SessionHistory, SessionRecord, VehicleClass
from parking_engine.plates import format_plate, normalize_plate

logger = logging.getLogger(__name__)


class SessionStore(ABC):

    @abstractmethod
    def list_active_sessions(self, user_id: str) -> List[SessionRecord]:
        ...

    @abstractmethod
    def insert_session(self, user_id: str, spot_id: int, plate: str, phone: str,
                       vehicle_class: VehicleClass, entry_time: datetime) -> None:
        ...

    @abstractmethod
    def close_session(self, user_id: str, spot_id: int, final_cost: Decimal, exit_time: datetime) -> None:
        ...

    @abstractmethod
    def find_active_by_plate(self, user_id: str, plate: str) -> List[SessionRecord]:
        ...

    @abstractmethod
    def list_sessions(self, user_id: str) -> List[SessionHistory]:
        """Все сессии пользователя, новые первыми"""


class RateConfigStore(ABC):

    @abstractmethod
    def read(self, user_id: str) -> Optional[Rates]:
        ...

    @abstractmethod
    def write(self, user_id: str, rates: Rates) -> None:
        ...


@contextmanager
def store_call(action: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"MongoDB error during {action}: {e}")
        raise StoreUnavailable(f"Хранилище недоступно ({action}): {str(e)}") from e
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        # Документ без обязательного поля или с мусором в значениях
        logger.error(f"Malformed document during {action}: {e!r}")
        raise StoreUnavailable(f"Повреждённый документ в хранилище ({action}): {e!r}") from e


def _record(doc: dict) -> SessionRecord:
    return SessionRecord(
        spot_id=doc["spot_id"],
        license_plate=doc["license_plate"],
        phone_number=doc.get("phone_number", ""),
        vehicle_type=doc["vehicle_type"],
        entry_time=as_utc(doc["entry_time"]),
    )


def _history(doc: dict) -> SessionHistory:
    return SessionHistory(
        spot_id=doc["spot_id"],
        license_plate=doc["license_plate"],
        vehicle_type=doc["vehicle_type"],
        entry_time=as_utc(doc["entry_time"]),
        exit_time=as_utc(doc["exit_time"]) if doc.get("exit_time") else None,
        is_active=doc.get("is_active", False),
        cost=Decimal(str(doc["cost"])) if doc.get("cost") is not None else None,
    )


class MongoSessionStore(SessionStore):

    def __init__(self, db: Database):
        self.collection = db.parking_sessions

    def list_active_sessions(self, user_id: str) -> List[SessionRecord]:
        with store_call("list_active_sessions"):
            docs = self.collection.find({"user_id": user_id, "is_active": True}, {"_id": 0})
            return [_record(doc) for doc in docs]

    def insert_session(self, user_id: str, spot_id: int, plate: str, phone: str,
                       vehicle_class: VehicleClass, entry_time: datetime) -> None:
        session_data = {
            "user_id": user_id,
            "spot_id": spot_id,
            "license_plate": plate,
            "phone_number": phone,
            "vehicle_type": vehicle_class.value,
            "entry_time": entry_time,
            "exit_time": None,
            "is_active": True,
            "cost": None,
        }
        with store_call("insert_session"):
            self.collection.insert_one(session_data)

    def close_session(self, user_id: str, spot_id: int, final_cost: Decimal, exit_time: datetime) -> None:
        with store_call("close_session"):
            result = self.collection.update_one(
                {"user_id": user_id, "spot_id": spot_id, "is_active": True},
                {"$set": {
                    "exit_time": exit_time,
                    "is_active": False,
                    "cost": round(float(final_cost), 2),
                }}
            )
        if result.matched_count == 0:
            # Сессию уже закрыли с другого устройства
            logger.warning(f"No active session for spot {spot_id} of user {user_id}")
            raise AlreadyEmpty(spot_id, f"Сессия на месте {spot_id} уже закрыта")

    def find_active_by_plate(self, user_id: str, plate: str) -> List[SessionRecord]:
        # Номер мог быть сохранён как с дефисом, так и без
        variants = sorted({format_plate(plate), normalize_plate(plate)})
        with store_call("find_active_by_plate"):
            docs = self.collection.find(
                {"user_id": user_id, "is_active": True, "license_plate": {"$in": variants}},
                {"_id": 0}
            )
            return [_record(doc) for doc in docs]

    def list_sessions(self, user_id: str) -> List[SessionHistory]:
        with store_call("list_sessions"):
            docs = self.collection.find({"user_id": user_id}, {"_id": 0}).sort("entry_time", -1)
            return [_history(doc) for doc in docs]


class MongoRateConfigStore(RateConfigStore):

    def __init__(self, db: Database):
        self.collection = db.profiles

    def read(self, user_id: str) -> Optional[Rates]:
        with store_call("read_rates"):
            profile = self.collection.find_one({"user_id": user_id}, {"_id": 0})
            if not profile:
                return None
            car_rate = profile.get("car_hourly_rate") or DEFAULT_CAR_RATE
            motorcycle_rate = profile.get("motorcycle_hourly_rate") or DEFAULT_MOTORCYCLE_RATE
            return Rates(
                car_hourly_rate=Decimal(str(car_rate)),
                motorcycle_hourly_rate=Decimal(str(motorcycle_rate)),
            )

    def write(self, user_id: str, rates: Rates) -> None:
        with store_call("write_rates"):
            self.collection.update_one(
                {"user_id": user_id},
                {"$set": {
                    "car_hourly_rate": float(rates.car_hourly_rate),
                    "motorcycle_hourly_rate": float(rates.motorcycle_hourly_rate),
                }},
                upsert=True
            )
