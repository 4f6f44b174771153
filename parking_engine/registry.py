import threading
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from parking_engine.config import CAR_SPOTS, MOTORCYCLE_SPOTS
from parking_engine.errors import NotFoundError
from parking_engine.models import Session, Spot, VehicleClass
from parking_engine.plates import normalize_plate


class SpotRegistry:
    """Фиксированный набор мест: сначала машины, затем мотоциклы.

    Записи ``Spot`` неизменяемы; любое изменение заменяет запись целиком
    под ``lock``. Многошаговые проходы (тик, синхронизация) берут ``lock``
    на всё время прохода.
    """

    def __init__(self, car_spots: int = CAR_SPOTS, motorcycle_spots: int = MOTORCYCLE_SPOTS):
        if car_spots < 0 or motorcycle_spots < 0:
            raise ValueError("Pool sizes cannot be negative")
        self.lock = threading.RLock()
        self.generation = 0
        self._spots: Dict[int, Spot] = {}
        spot_id = 1
        for vehicle_class, size in ((VehicleClass.CAR, car_spots), (VehicleClass.MOTORCYCLE, motorcycle_spots)):
            for _ in range(size):
                self._spots[spot_id] = Spot(id=spot_id, vehicle_class=vehicle_class)
                spot_id += 1

    def __len__(self) -> int:
        return len(self._spots)

    def list(self, vehicle_class: Optional[VehicleClass] = None) -> List[Spot]:
        with self.lock:
            spots = list(self._spots.values())
        if vehicle_class is None:
            return spots
        return [spot for spot in spots if spot.vehicle_class == vehicle_class]

    def get(self, spot_id: int) -> Spot:
        with self.lock:
            try:
                return self._spots[spot_id]
            except KeyError:
                raise NotFoundError(spot_id) from None

    def occupied(self) -> List[Spot]:
        return [spot for spot in self.list() if spot.is_occupied]

    def available_count(self, vehicle_class: VehicleClass) -> int:
        return sum(1 for spot in self.list(vehicle_class) if not spot.is_occupied)

    def set_occupied(self, spot_id: int, session: Session) -> Spot:
        with self.lock:
            spot = self.get(spot_id).model_copy(update={"session": session})
            self._spots[spot_id] = spot
            return spot

    def set_empty(self, spot_id: int) -> Optional[Session]:
        """Освобождает место и возвращает снятую сессию"""
        with self.lock:
            spot = self.get(spot_id)
            self._spots[spot_id] = spot.model_copy(update={"session": None})
            return spot.session

    def update_derived(self, spot_id: int, minutes: int, seconds: int, cost: Decimal,
                       expected: Optional[Session] = None) -> bool:
        """Обновляет производные поля сессии.

        Пустые места не трогаются. Если передан ``expected`` и на месте уже
        другая сессия (её заменила синхронизация или освобождение), результат
        отбрасывается.
        """
        with self.lock:
            spot = self.get(spot_id)
            if spot.session is None:
                return False
            if expected is not None and spot.session is not expected:
                return False
            session = spot.session.model_copy(update={
                "elapsed_minutes": minutes,
                "elapsed_seconds": seconds,
                "accrued_cost": cost,
            })
            self._spots[spot_id] = spot.model_copy(update={"session": session})
            return True

    def find_by_normalized_plate(self, plate: str) -> List[Spot]:
        normalized = normalize_plate(plate)
        if not normalized:
            return []
        return [spot for spot in self.occupied() if spot.session.normalized_plate == normalized]

    def replace_occupancy(self, sessions: Mapping[int, Session]) -> None:
        """Полная замена занятости: места вне ``sessions`` становятся свободными"""
        with self.lock:
            for spot_id in sessions:
                self.get(spot_id)
            self._spots = {
                spot_id: spot.model_copy(update={"session": sessions.get(spot_id)})
                for spot_id, spot in self._spots.items()
            }
            self.generation += 1
