"""
Change notifier: turns upstream store changes into recompute signals.

A subscription watches bookings, blocked slots and court configuration for
one scope (a set of courts or a whole venue, optionally one date) and
invokes a recompute callback when something in scope changes. It does not
say *what* changed; the callback re-runs the full resolver + reducer
pipeline, which is cheap (bounded by slots per day).

Lifecycle of one subscription::

    DISCONNECTED → SUBSCRIBING → SUBSCRIBED → UNSUBSCRIBING → DISCONNECTED

Bursts of events are coalesced: the callback runs once per debounce
window, and an event arriving while the callback runs schedules one more
run, so the last event is always followed by a recompute.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import date
from enum import Enum

from venue_availability.config import NOTIFY_DEBOUNCE_SECONDS
from venue_availability.errors import SubscriptionFailed
from venue_availability.models import ChangeEvent, ChangeScope
from venue_availability.services.providers import AvailabilityDataProvider, Disposer

logger = logging.getLogger(__name__)

RecomputeCallback = Callable[[], Awaitable[None] | None]
FailureCallback = Callable[[SubscriptionFailed], Awaitable[None] | None]


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"


def court_scope(court_ids: Iterable[str], target_date: date | None = None) -> ChangeScope:
    return ChangeScope(court_ids=frozenset(court_ids), date=target_date)


def venue_scope(venue_id: str, target_date: date | None = None) -> ChangeScope:
    return ChangeScope(venue_id=venue_id, date=target_date)


class ChangeSubscription:
    """One live subscription for one scope. Shares no state with others."""

    def __init__(
        self,
        provider: AvailabilityDataProvider,
        scope: ChangeScope,
        on_change: RecomputeCallback,
        *,
        debounce: float = NOTIFY_DEBOUNCE_SECONDS,
        on_error: FailureCallback | None = None,
        name: str = "change-subscription",
    ) -> None:
        self._provider = provider
        self._scope = scope
        self._on_change = on_change
        self._on_error = on_error
        self._debounce = debounce
        self._name = name

        self._state = SubscriptionState.DISCONNECTED
        self._disposer: Disposer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending = False
        self._flush_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Future[None]] = set()

        self.events_received = 0
        self.notifications = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def scope(self) -> ChangeScope:
        return self._scope

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def subscribe(self) -> None:
        """Open the subscription; returns once the transport confirmed it."""
        if self._state is not SubscriptionState.DISCONNECTED:
            return

        self._loop = asyncio.get_running_loop()
        self._state = SubscriptionState.SUBSCRIBING
        try:
            disposer = await self._provider.subscribe_to_changes(
                self._scope, self._deliver, self._transport_lost,
            )
        except SubscriptionFailed:
            self._state = SubscriptionState.DISCONNECTED
            raise
        except asyncio.CancelledError:
            self._state = SubscriptionState.DISCONNECTED
            raise
        except Exception as exc:
            self._state = SubscriptionState.DISCONNECTED
            raise SubscriptionFailed(
                "Failed to subscribe to availability changes",
                subscription=self._name,
            ) from exc

        if self._state is not SubscriptionState.SUBSCRIBING:
            # unsubscribe() ran while the transport was confirming
            await disposer()
            return

        self._disposer = disposer
        self._state = SubscriptionState.SUBSCRIBED
        logger.debug("%s subscribed (%s)", self._name, self._scope)

    async def unsubscribe(self) -> None:
        """Release the subscription. Idempotent, callable from any state."""
        if (
            self._state is SubscriptionState.DISCONNECTED
            and self._disposer is None
            and self._flush_task is None
            and not self._callback_tasks
        ):
            return

        self._state = SubscriptionState.UNSUBSCRIBING
        self._pending = False

        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        current = asyncio.current_task()
        callbacks = [t for t in self._callback_tasks if t is not current and not t.done()]
        for callback in callbacks:
            callback.cancel()
        if callbacks:
            await asyncio.gather(*callbacks, return_exceptions=True)

        disposer, self._disposer = self._disposer, None
        try:
            if disposer is not None:
                await disposer()
        except Exception:
            logger.exception("%s: transport failed to release subscription", self._name)
        finally:
            self._state = SubscriptionState.DISCONNECTED
            logger.debug("%s unsubscribed", self._name)

    async def __aenter__(self) -> ChangeSubscription:
        await self.subscribe()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.unsubscribe()

    # ── Transport callbacks (any thread) ──────────────────────────────

    def _deliver(self, event: ChangeEvent) -> None:
        self._call_on_loop(self._on_event, event)

    def _transport_lost(self, exc: SubscriptionFailed) -> None:
        self._call_on_loop(self._on_lost, exc)

    def _call_on_loop(self, func: Callable[..., None], arg: object) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            func(arg)
        else:
            loop.call_soon_threadsafe(func, arg)

    # ── Event handling (owning loop) ──────────────────────────────────

    def _on_event(self, event: ChangeEvent) -> None:
        if self._state is not SubscriptionState.SUBSCRIBED:
            return
        if not self._scope.matches(event):
            return

        self.events_received += 1
        self._pending = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(
                self._flush(), name=f"{self._name}-flush",
            )

    async def _flush(self) -> None:
        while self._pending and self._state is SubscriptionState.SUBSCRIBED:
            await asyncio.sleep(self._debounce)
            if self._state is not SubscriptionState.SUBSCRIBED:
                return
            self._pending = False
            self.notifications += 1
            try:
                result = self._on_change()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s: recompute callback failed", self._name)

    def _on_lost(self, exc: SubscriptionFailed) -> None:
        if self._state in (SubscriptionState.DISCONNECTED, SubscriptionState.UNSUBSCRIBING):
            return

        if not isinstance(exc, SubscriptionFailed):
            exc = SubscriptionFailed(str(exc), subscription=self._name)

        logger.warning("%s lost its subscription: %s", self._name, exc)
        self._state = SubscriptionState.DISCONNECTED
        self._disposer = None  # the transport already dropped us
        self._pending = False
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = None

        if self._on_error is not None:
            result = self._on_error(exc)
            if inspect.isawaitable(result):
                callback = asyncio.ensure_future(result)
                self._callback_tasks.add(callback)
                callback.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Future[None]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: error callback failed", self._name, exc_info=exc)


class ChangeNotifier:
    """
    Owns every subscription opened by one consumer.

    ``aclose()`` (or leaving ``async with``) releases all of them, on error
    paths too, so nothing outlives its consumer.
    """

    def __init__(
        self,
        provider: AvailabilityDataProvider,
        *,
        debounce: float = NOTIFY_DEBOUNCE_SECONDS,
    ) -> None:
        self._provider = provider
        self._debounce = debounce
        self._subscriptions: set[ChangeSubscription] = set()

    @property
    def open_count(self) -> int:
        return len(self._subscriptions)

    async def open(
        self,
        scope: ChangeScope,
        on_change: RecomputeCallback,
        *,
        on_error: FailureCallback | None = None,
        name: str = "change-subscription",
    ) -> ChangeSubscription:
        subscription = ChangeSubscription(
            self._provider,
            scope,
            on_change,
            debounce=self._debounce,
            on_error=on_error,
            name=name,
        )
        self._subscriptions.add(subscription)
        try:
            await subscription.subscribe()
        except BaseException:
            self._subscriptions.discard(subscription)
            raise
        return subscription

    async def release(self, subscription: ChangeSubscription) -> None:
        try:
            await subscription.unsubscribe()
        finally:
            self._subscriptions.discard(subscription)

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions):
            await self.release(subscription)

    async def __aenter__(self) -> ChangeNotifier:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
