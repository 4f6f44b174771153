import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from parking_engine.billing import BillingPolicy, utcnow
from parking_engine.config import TICK_INTERVAL_SECONDS
from parking_engine.models import Rates
from parking_engine.rates import RateConfig
from parking_engine.registry import SpotRegistry
from parking_engine.scheduling import Ticker

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class TickEngine:
    """Пересчёт времени и стоимости для всех занятых мест.

    Пересчёт идёт по таймеру и дополнительно сразу после смены тарифов.
    ``stop()`` отменяет таймер и отписывается от уведомлений о тарифах.
    """

    def __init__(self, registry: SpotRegistry, billing: BillingPolicy, rates: RateConfig,
                 clock: Callable[[], datetime] = utcnow, interval: float = TICK_INTERVAL_SECONDS):
        self.registry = registry
        self.billing = billing
        self.rates = rates
        self.clock = clock
        self.interval = interval
        self.state = EngineState.IDLE
        self._ticker: Optional[Ticker] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self.state == EngineState.RUNNING:
            return
        self._unsubscribe = self.rates.notifier.subscribe(self._on_rates_changed)
        self._ticker = Ticker(self.interval, self._tick, name="tick-engine")
        self._ticker.start()
        self.state = EngineState.RUNNING
        self.recompute()

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.state = EngineState.IDLE

    def recompute(self, now: Optional[datetime] = None) -> int:
        """Один проход по занятым местам; возвращает число обновлённых мест"""
        updated = 0
        with self.registry.lock:
            now = now or self.clock()
            rates = self.rates.current()
            for spot in self.registry.occupied():
                session = self.billing.recompute(spot.session, spot.vehicle_class, rates, now)
                if self.registry.update_derived(spot.id, session.elapsed_minutes, session.elapsed_seconds,
                                                session.accrued_cost, expected=spot.session):
                    updated += 1
        return updated

    def _tick(self) -> None:
        if self.state != EngineState.RUNNING:
            return
        self.recompute()

    def _on_rates_changed(self, rates: Rates) -> None:
        if self.state != EngineState.RUNNING:
            return
        updated = self.recompute()
        logger.info(f"Rates changed, recomputed {updated} occupied spots")
