import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from parking_engine.allocator import Allocator
from parking_engine.billing import BillingPolicy, as_utc, utcnow
from parking_engine.config import RESYNC_INTERVAL_SECONDS
from parking_engine.errors import StoreUnavailable
from parking_engine.models import Session, SessionRecord
from parking_engine.plates import format_phone, format_plate
from parking_engine.rates import RateConfig
from parking_engine.registry import SpotRegistry
from parking_engine.scheduling import Ticker
from parking_engine.stores import SessionStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Синхронизация занятости с внешним хранилищем.

    Хранилище считается источником истины: каждый проход полностью
    заменяет занятость в реестре. Если чтение не удалось, проход
    пропускается и текущее состояние остаётся как есть.

    Снимок, прочитанный до завершения локального заезда или выезда,
    устарел: такой снимок не применяется, хранилище читается заново
    (не более ``max_attempts`` раз за проход).
    """

    def __init__(self, user_id: str, registry: SpotRegistry, store: SessionStore,
                 billing: BillingPolicy, rates: RateConfig,
                 clock: Callable[[], datetime] = utcnow, interval: float = RESYNC_INTERVAL_SECONDS,
                 allocator: Optional[Allocator] = None, max_attempts: int = 3):
        self.user_id = user_id
        self.registry = registry
        self.store = store
        self.billing = billing
        self.rates = rates
        self.clock = clock
        self.interval = interval
        self.allocator = allocator
        self.max_attempts = max_attempts
        self.last_synced_at: Optional[datetime] = None
        self._ticker: Optional[Ticker] = None
        self._closed = False

    def apply(self, records: Iterable[SessionRecord], now: Optional[datetime] = None) -> int:
        """Заменяет занятость реестра активными сессиями из хранилища"""
        sessions: Dict[int, Session] = {}
        with self.registry.lock:
            now = now or self.clock()
            rates = self.rates.current()
            spots = {spot.id: spot for spot in self.registry.list()}
            for record in records:
                spot = spots.get(record.spot_id)
                if spot is None:
                    logger.warning(f"Active session for unknown spot {record.spot_id} ignored")
                    continue
                if record.spot_id in sessions:
                    logger.warning(f"Several active sessions for spot {record.spot_id}, keeping the first one")
                    continue
                if record.vehicle_type != spot.vehicle_class:
                    logger.warning(f"Session {record.license_plate} is {record.vehicle_type.value} "
                                   f"but spot {spot.id} is {spot.vehicle_class.value}")
                session = Session(
                    license_plate=format_plate(record.license_plate),
                    phone_number=format_phone(record.phone_number),
                    entry_time=as_utc(record.entry_time),
                )
                sessions[record.spot_id] = self.billing.recompute(session, spot.vehicle_class, rates, now)
            self.registry.replace_occupancy(sessions)
            self.last_synced_at = now
        logger.info(f"Синхронизация для {self.user_id}: {len(sessions)} активных сессий")
        return len(sessions)

    def _local_version(self) -> int:
        return self.allocator.version if self.allocator is not None else 0

    def _apply_if_unchanged(self, records, version: int) -> bool:
        with self.registry.lock:
            if self.allocator is not None and \
                    (self.allocator.version != version or self.allocator.in_flight):
                return False
            self.apply(records)
            return True

    def resync(self, user_id: Optional[str] = None) -> bool:
        user_id = user_id or self.user_id
        for _ in range(self.max_attempts):
            version = self._local_version()
            try:
                records = self.store.list_active_sessions(user_id)
            except StoreUnavailable as e:
                logger.warning(f"Синхронизация пропущена: {e}")
                return False
            if self._apply_if_unchanged(records, version):
                return True
            logger.info("Local park or release during resync read, reading again")
        logger.warning("Синхронизация пропущена: локальные изменения во время чтения")
        return False

    async def resync_async(self) -> bool:
        """То же, что ``resync``, но чтение из хранилища вне цикла событий"""
        for _ in range(self.max_attempts):
            version = self._local_version()
            try:
                records = await asyncio.to_thread(self.store.list_active_sessions, self.user_id)
            except StoreUnavailable as e:
                logger.warning(f"Синхронизация пропущена: {e}")
                return False
            if self._closed:
                return False
            if self._apply_if_unchanged(records, version):
                return True
            logger.info("Local park or release during resync read, reading again")
        logger.warning("Синхронизация пропущена: локальные изменения во время чтения")
        return False

    def start(self) -> None:
        self._closed = False
        if self._ticker is None:
            self._ticker = Ticker(self.interval, self.resync_async, name="reconciler")
            self._ticker.start()

    def stop(self) -> None:
        self._closed = True
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
