import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from parking_engine.allocator import Allocator
from parking_engine.billing import BillingPolicy, get_policy, utcnow
from parking_engine.config import CAR_SPOTS, MOTORCYCLE_SPOTS, RESYNC_INTERVAL_SECONDS, TICK_INTERVAL_SECONDS
from parking_engine.errors import DuplicatePlate, StoreUnavailable, ValidationError
from parking_engine.models import Rates, Receipt, Spot, VehicleClass
from parking_engine.rates import RateConfig
from parking_engine.registry import SpotRegistry
from parking_engine.reconciler import Reconciler
from parking_engine.reports import summarize_sessions
from parking_engine.stores import RateConfigStore, SessionStore
from parking_engine.tick_engine import TickEngine

logger = logging.getLogger(__name__)


class ParkingService:
    """Контекст одного пользователя: реестр мест, тарифы и фоновые задачи.

    Изменения в памяти выполняются только после успешной записи во
    внешнее хранилище. Ожидание возможно только на вызовах хранилища.
    """

    def __init__(self, user_id: str, session_store: SessionStore, rate_store: RateConfigStore,
                 car_spots: int = CAR_SPOTS, motorcycle_spots: int = MOTORCYCLE_SPOTS,
                 billing: Optional[BillingPolicy] = None, clock: Callable[[], datetime] = utcnow,
                 tick_interval: float = TICK_INTERVAL_SECONDS,
                 resync_interval: float = RESYNC_INTERVAL_SECONDS):
        self.user_id = user_id
        self.session_store = session_store
        self.rate_store = rate_store
        self.clock = clock
        self.billing = billing or get_policy()
        self.registry = SpotRegistry(car_spots, motorcycle_spots)
        self.rates = RateConfig()
        self.allocator = Allocator(self.registry, self.billing, self.rates, clock)
        self.tick_engine = TickEngine(self.registry, self.billing, self.rates, clock, tick_interval)
        self.reconciler = Reconciler(user_id, self.registry, session_store, self.billing, self.rates,
                                     clock, resync_interval, allocator=self.allocator)

    async def start(self) -> None:
        await self.load_rates()
        await self.reconciler.resync_async()
        self.tick_engine.start()
        self.reconciler.start()
        logger.info(f"Parking context started for {self.user_id}")

    async def close(self) -> None:
        self.tick_engine.stop()
        self.reconciler.stop()
        logger.info(f"Parking context closed for {self.user_id}")

    async def load_rates(self) -> Rates:
        try:
            rates = await asyncio.to_thread(self.rate_store.read, self.user_id)
        except StoreUnavailable as e:
            logger.warning(f"Using default rates for {self.user_id}: {e}")
            return self.rates.current()
        if rates is None:
            return self.rates.current()
        try:
            rates = self.rates.validate(rates.car_hourly_rate, rates.motorcycle_hourly_rate)
        except ValidationError as e:
            logger.warning(f"Stored rates for {self.user_id} rejected, using defaults: {e.detail}")
            return self.rates.current()
        self.rates.replace(rates)
        return self.rates.current()

    async def park(self, vehicle_class: VehicleClass, plate: str, phone: str) -> int:
        """Регистрация заезда на первое свободное место нужного типа"""
        plate, phone = self.allocator.validate(plate, phone)
        self.allocator.check_duplicate(plate)

        # Сессия могла быть открыта с другого устройства
        active = await asyncio.to_thread(self.session_store.find_active_by_plate, self.user_id, plate)
        if active:
            raise DuplicatePlate(plate, active[0].spot_id)

        spot_id = self.allocator.reserve(vehicle_class, plate)
        entry_time = self.clock()
        try:
            await asyncio.to_thread(self.session_store.insert_session, self.user_id, spot_id, plate,
                                    phone, vehicle_class, entry_time)
        except BaseException:
            self.allocator.cancel(spot_id)
            raise
        self.allocator.commit(spot_id, plate, phone, entry_time)
        return spot_id

    async def release(self, spot_id: int) -> Receipt:
        """Обработка выезда: стоимость пересчитывается в момент выезда"""
        receipt = self.allocator.begin_release(spot_id)
        try:
            await asyncio.to_thread(self.session_store.close_session, self.user_id, spot_id,
                                    receipt.cost, receipt.exit_time)
        except BaseException:
            self.allocator.abort_release(spot_id)
            raise
        self.allocator.finish_release(receipt)
        return receipt

    def search(self, plate: str) -> List[Spot]:
        return [self.registry.get(spot_id) for spot_id in self.allocator.search(plate)]

    async def update_rates(self, car_rate, motorcycle_rate) -> Rates:
        """Новые тарифы применяются только после успешной записи в профиль"""
        rates = self.rates.validate(car_rate, motorcycle_rate)
        await asyncio.to_thread(self.rate_store.write, self.user_id, rates)
        self.rates.replace(rates)
        return rates

    async def resync(self) -> bool:
        return await self.reconciler.resync_async()

    def status(self, vehicle_class: Optional[VehicleClass] = None) -> dict:
        return {
            "spots": self.registry.list(vehicle_class),
            "available": {vc.value: self.registry.available_count(vc) for vc in VehicleClass},
        }

    async def summary(self) -> dict:
        sessions = await asyncio.to_thread(self.session_store.list_sessions, self.user_id)
        return summarize_sessions(sessions)


class UserContexts:
    """Активные контексты пользователей; контекст создаётся при первом обращении"""

    def __init__(self, factory: Callable[[str], ParkingService]):
        self.factory = factory
        self._services: Dict[str, ParkingService] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._services

    async def get(self, user_id: str) -> ParkingService:
        async with self._lock:
            service = self._services.get(user_id)
            if service is None:
                service = self.factory(user_id)
                await service.start()
                self._services[user_id] = service
            return service

    async def close(self, user_id: str) -> bool:
        async with self._lock:
            service = self._services.pop(user_id, None)
        if service is None:
            return False
        await service.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            services = list(self._services.values())
            self._services.clear()
        for service in services:
            await service.close()
