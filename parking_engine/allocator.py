import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from parking_engine.billing import BillingPolicy, utcnow
from parking_engine.errors import AlreadyEmpty, DuplicatePlate, NoSpotAvailable, ValidationError
from parking_engine.models import Receipt, Session, VehicleClass
from parking_engine.plates import format_phone, format_plate, normalize_plate, validate_phone, validate_plate
from parking_engine.rates import RateConfig
from parking_engine.registry import SpotRegistry

logger = logging.getLogger(__name__)


class Allocator:
    """Выбор места для заезда и освобождение места при выезде.

    Выбор места синхронный и выполняется под блокировкой реестра. Между
    выбором и фиксацией (пока идёт запись во внешнее хранилище) место
    числится зарезервированным, и другой заезд его не получит.
    """

    def __init__(self, registry: SpotRegistry, billing: BillingPolicy, rates: RateConfig,
                 clock: Callable[[], datetime] = utcnow):
        self.registry = registry
        self.billing = billing
        self.rates = rates
        self.clock = clock
        self._reserved: Dict[int, str] = {}
        self._releasing: Set[int] = set()
        # Растёт при каждом локальном заезде/выезде, зафиксированном в хранилище
        self.version = 0

    @property
    def in_flight(self) -> bool:
        """Есть заезд или выезд, ещё не завершённый записью в хранилище"""
        with self.registry.lock:
            return bool(self._reserved or self._releasing)

    @staticmethod
    def validate(plate: str, phone: str) -> Tuple[str, str]:
        """Проверяет формат и возвращает отображаемые формы номера и телефона"""
        if not validate_plate(plate):
            raise ValidationError(f"Неверный формат номера: {plate!r}")
        if not validate_phone(phone):
            raise ValidationError(f"Неверный номер телефона: {phone!r}")
        return format_plate(plate), format_phone(phone)

    def check_duplicate(self, plate: str) -> None:
        normalized = normalize_plate(plate)
        with self.registry.lock:
            spots = self.registry.find_by_normalized_plate(normalized)
            if spots:
                raise DuplicatePlate(format_plate(plate), spots[0].id)
            for spot_id, reserved_plate in self._reserved.items():
                if reserved_plate == normalized:
                    raise DuplicatePlate(format_plate(plate), spot_id)

    def reserve(self, vehicle_class: VehicleClass, plate: str) -> int:
        """Первое свободное место с наименьшим id нужного типа"""
        with self.registry.lock:
            self.check_duplicate(plate)
            for spot in self.registry.list(vehicle_class):
                if not spot.is_occupied and spot.id not in self._reserved:
                    self._reserved[spot.id] = normalize_plate(plate)
                    return spot.id
        raise NoSpotAvailable(vehicle_class)

    def cancel(self, spot_id: int) -> None:
        with self.registry.lock:
            self._reserved.pop(spot_id, None)

    def commit(self, spot_id: int, plate: str, phone: str,
               entry_time: Optional[datetime] = None) -> Session:
        session = Session(
            license_plate=plate,
            phone_number=phone,
            entry_time=entry_time or self.clock(),
        )
        with self.registry.lock:
            self._reserved.pop(spot_id, None)
            current = self.registry.get(spot_id)
            if current.is_occupied and current.session.normalized_plate != session.normalized_plate:
                logger.warning(f"Spot {spot_id} held {current.session.license_plate}, replacing with {plate}")
            self.registry.set_occupied(spot_id, session)
            self.version += 1
        logger.info(f"Транспортное средство {plate} заняло место {spot_id}")
        return session

    def park(self, vehicle_class: VehicleClass, plate: str, phone: str) -> int:
        """Заезд без внешнего хранилища: проверка, выбор места, фиксация"""
        plate, phone = self.validate(plate, phone)
        spot_id = self.reserve(vehicle_class, plate)
        self.commit(spot_id, plate, phone)
        return spot_id

    def quote(self, spot_id: int, now: Optional[datetime] = None) -> Receipt:
        """Итоговая стоимость, пересчитанная на момент ``now``"""
        now = now or self.clock()
        spot = self.registry.get(spot_id)
        if not spot.is_occupied:
            raise AlreadyEmpty(spot_id)
        session = self.billing.recompute(spot.session, spot.vehicle_class, self.rates.current(), now)
        return Receipt(
            spot_id=spot_id,
            vehicle_class=spot.vehicle_class,
            license_plate=session.license_plate,
            phone_number=session.phone_number,
            entry_time=session.entry_time,
            exit_time=now,
            elapsed_minutes=session.elapsed_minutes,
            cost=session.accrued_cost,
        )

    def begin_release(self, spot_id: int, now: Optional[datetime] = None) -> Receipt:
        with self.registry.lock:
            if spot_id in self._releasing:
                raise AlreadyEmpty(spot_id, f"Место {spot_id} уже освобождается")
            receipt = self.quote(spot_id, now)
            self._releasing.add(spot_id)
            return receipt

    def abort_release(self, spot_id: int) -> None:
        with self.registry.lock:
            self._releasing.discard(spot_id)

    def finish_release(self, receipt: Receipt) -> None:
        with self.registry.lock:
            self._releasing.discard(receipt.spot_id)
            self.version += 1
            spot = self.registry.get(receipt.spot_id)
            if spot.is_occupied and spot.session.entry_time == receipt.entry_time \
                    and spot.session.normalized_plate == normalize_plate(receipt.license_plate):
                self.registry.set_empty(receipt.spot_id)
            else:
                logger.warning(f"Spot {receipt.spot_id} changed during release, leaving it as is")
        logger.info(f"Место {receipt.spot_id} освобождено, стоимость {receipt.cost}")

    def release(self, spot_id: int, now: Optional[datetime] = None) -> Receipt:
        receipt = self.begin_release(spot_id, now)
        self.finish_release(receipt)
        return receipt

    def search(self, plate: str) -> List[int]:
        return [spot.id for spot in self.registry.find_by_normalized_plate(plate)]
