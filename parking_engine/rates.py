import logging
import threading
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, List, Optional

from parking_engine.config import DEFAULT_CAR_RATE, DEFAULT_MOTORCYCLE_RATE, MAX_HOURLY_RATE
from parking_engine.errors import ValidationError
from parking_engine.models import Rates, VehicleClass

logger = logging.getLogger(__name__)

RateListener = Callable[[Rates], None]


def default_rates() -> Rates:
    return Rates(car_hourly_rate=DEFAULT_CAR_RATE, motorcycle_hourly_rate=DEFAULT_MOTORCYCLE_RATE)


def parse_rate(value, name: str, max_rate: Decimal = MAX_HOURLY_RATE) -> Decimal:
    """Проверка тарифа: положительное число не больше max_rate"""
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Тариф {name} должен быть числом: {value!r}") from None
    if not rate.is_finite() or rate <= 0:
        raise ValidationError(f"Тариф {name} должен быть больше нуля")
    if rate > max_rate:
        raise ValidationError(f"Тариф {name} должен быть не больше {max_rate}")
    return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class RateChangeNotifier:
    """Явная подписка на изменение тарифов.

    ``subscribe`` возвращает функцию отписки, чтобы владелец подписки
    (например, TickEngine) мог детерминированно от неё отказаться.
    """

    def __init__(self):
        self._listeners: List[RateListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: RateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: RateListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, rates: Rates) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(rates)
            except Exception:
                logger.exception("Rate change listener failed")


class RateConfig:
    """Текущие тарифы. Снимок заменяется целиком, оба тарифа сразу."""

    def __init__(self, rates: Optional[Rates] = None, notifier: Optional[RateChangeNotifier] = None,
                 max_rate: Decimal = MAX_HOURLY_RATE):
        self._rates = rates or default_rates()
        self.notifier = notifier or RateChangeNotifier()
        self.max_rate = max_rate
        self._lock = threading.Lock()

    def current(self) -> Rates:
        with self._lock:
            return self._rates

    def hourly_rate(self, vehicle_class: VehicleClass) -> Decimal:
        return self.current().for_class(vehicle_class)

    def validate(self, car_rate, motorcycle_rate) -> Rates:
        return Rates(
            car_hourly_rate=parse_rate(car_rate, "car", self.max_rate),
            motorcycle_hourly_rate=parse_rate(motorcycle_rate, "motorcycle", self.max_rate),
        )

    def update(self, car_rate, motorcycle_rate) -> Rates:
        """Замена тарифов; слушатели уведомляются синхронно до возврата"""
        rates = self.validate(car_rate, motorcycle_rate)
        self.replace(rates)
        return rates

    def replace(self, rates: Rates) -> None:
        with self._lock:
            self._rates = rates
        logger.info(f"Тарифы обновлены: car={rates.car_hourly_rate}, motorcycle={rates.motorcycle_hourly_rate}")
        self.notifier.notify(rates)
