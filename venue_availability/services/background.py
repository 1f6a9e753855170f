from __future__ import annotations

import asyncio
import contextlib
import logging

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """
    Base class for services that poll on a fixed interval.

    Subclasses implement ``_tick``. A failed tick is logged and retried on
    the next interval; the worker counts consecutive failures and calls
    ``_on_tick_error`` with the running count so a subclass can give up on
    its consumers while the loop itself keeps going.
    """

    def __init__(self, *, interval: float, name: str) -> None:
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._consecutive_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def start(self) -> None:
        if self.is_running:
            return
        await self._on_start()
        self._consecutive_failures = 0
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %.2fs)", self._name, self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("%s stopped", self._name)

    async def _on_start(self) -> None:
        pass

    async def _tick(self) -> None:
        raise NotImplementedError

    async def _on_tick_error(self, exc: Exception, failures: int) -> None:
        pass

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._tick()
            except Exception as exc:
                self._consecutive_failures += 1
                logger.exception(
                    "%s tick failed (%d in a row); retrying",
                    self._name, self._consecutive_failures,
                )
                await self._on_tick_error(exc, self._consecutive_failures)
            else:
                if self._consecutive_failures:
                    logger.info(
                        "%s recovered after %d failed ticks",
                        self._name, self._consecutive_failures,
                    )
                self._consecutive_failures = 0
