import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """Периодическая задача asyncio с явной остановкой.

    Колбэк может быть обычной функцией или корутиной. Ошибка колбэка
    логируется, цикл продолжается. После ``stop()`` колбэк больше не вызывается.
    """

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "ticker"):
        if interval <= 0:
            raise ValueError("Interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Periodic task {self.name} failed")
