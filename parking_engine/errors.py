"""Ошибки ядра парковки"""
from typing import Optional


class ParkingError(Exception):
    code = "parking_error"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"status": "error", "code": self.code, "detail": self.detail}


class ValidationError(ParkingError):
    """Неверный формат номера, телефона или тарифа"""
    code = "validation_error"
    status_code = 422


class DuplicatePlate(ParkingError):
    code = "duplicate_plate"
    status_code = 409

    def __init__(self, plate: str, spot_id: Optional[int] = None):
        if spot_id is None:
            detail = f"Транспортное средство {plate} уже находится на парковке"
        else:
            detail = f"Транспортное средство {plate} уже находится на месте {spot_id}"
        super().__init__(detail)
        self.plate = plate
        self.spot_id = spot_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["spot_id"] = self.spot_id
        return data


class NoSpotAvailable(ParkingError):
    code = "no_spot_available"
    status_code = 409

    def __init__(self, vehicle_class):
        super().__init__(f"Нет свободных мест для типа {vehicle_class.value}")
        self.vehicle_class = vehicle_class


class NotFoundError(ParkingError):
    code = "not_found"
    status_code = 404

    def __init__(self, spot_id: int):
        super().__init__(f"Парковочное место {spot_id} не существует")
        self.spot_id = spot_id


class AlreadyEmpty(ParkingError):
    code = "already_empty"
    status_code = 409

    def __init__(self, spot_id: int, detail: Optional[str] = None):
        super().__init__(detail or f"Парковочное место {spot_id} уже свободно")
        self.spot_id = spot_id


class StoreUnavailable(ParkingError):
    """Внешнее хранилище не ответило; локальное состояние не изменено"""
    code = "store_unavailable"
    status_code = 503
