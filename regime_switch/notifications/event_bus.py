"""RegimeEventBus for non-blocking regime change fan-out.

CRITICAL: publish() must NEVER block. It uses put_nowait().
- Every subscriber has its own bounded queue and delivery task
- A full subscriber queue drops the event for that subscriber only
- Dropped events are written to the fallback log
- Subscriber exceptions are logged and counted, delivery continues
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from regime_switch import metrics as prom
from regime_switch.contracts import RegimeChange

logger = logging.getLogger(__name__)

RegimeChangeHandler = Callable[[RegimeChange], Awaitable[None]]

DEFAULT_QUEUE_SIZE = 100


@dataclass
class SubscriberStats:
    """Delivery counters of one subscriber."""

    name: str
    delivered: int = 0
    dropped: int = 0
    failed: int = 0
    pending: int = 0


class _Subscription:
    def __init__(self, name: str, handler: RegimeChangeHandler, queue_size: int) -> None:
        self.name = name
        self.handler = handler
        self.queue: asyncio.Queue[RegimeChange] = asyncio.Queue(maxsize=queue_size)
        self.stats = SubscriberStats(name=name)
        self.task: asyncio.Task[None] | None = None


class RegimeEventBus:
    """Publish-subscribe bus for RegimeChange notifications.

    A slow or failing subscriber never stalls the publisher or the other
    subscribers: each one drains its own queue on its own task.

    Attributes:
        queue_size: Capacity of each subscriber queue
        is_running: Whether the delivery tasks are running
        subscriber_count: Number of registered subscribers
    """

    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        fallback_log_path: Path | None = None,
    ) -> None:
        """Initialize the RegimeEventBus.

        Args:
            queue_size: Capacity of each subscriber queue
            fallback_log_path: JSON-lines file receiving dropped events
        """
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.queue_size = queue_size
        self._fallback_log_path = fallback_log_path
        self._subscriptions: dict[str, _Subscription] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def drop_count(self) -> int:
        """Events dropped across all subscribers."""
        return sum(sub.stats.dropped for sub in self._subscriptions.values())

    def subscribe(self, handler: RegimeChangeHandler, name: str | None = None) -> str:
        """Register an async handler.

        Subscribing while the bus runs starts the handler's delivery task
        immediately.

        Args:
            handler: Async callable that accepts a RegimeChange
            name: Subscriber name used in stats; defaults to the handler name

        Returns:
            The subscriber name.
        """
        name = (
            name
            or getattr(handler, "__name__", None)
            or f"subscriber-{len(self._subscriptions)}"
        )
        if name in self._subscriptions:
            raise ValueError(f"Subscriber already registered: {name}")
        sub = _Subscription(name, handler, self.queue_size)
        self._subscriptions[name] = sub
        if self._running:
            sub.task = asyncio.create_task(self._deliver(sub))
        return name

    async def unsubscribe(self, name: str) -> None:
        sub = self._subscriptions.pop(name, None)
        if sub is not None:
            await self._cancel(sub)

    async def publish(self, change: RegimeChange) -> bool:
        """Non-blocking publish. MUST use put_nowait.

        Args:
            change: The regime change to broadcast

        Returns:
            True if every subscriber queued the event, False if any dropped it
        """
        delivered_to_all = True
        for sub in self._subscriptions.values():
            try:
                sub.queue.put_nowait(change)
            except asyncio.QueueFull:
                delivered_to_all = False
                sub.stats.dropped += 1
                prom.events_dropped_total.labels(subscriber=sub.name).inc()
                logger.warning(f"Subscriber {sub.name} queue full, regime change dropped")
                self._write_fallback_log(sub.name, change)
        return delivered_to_all

    async def start(self) -> None:
        """Start one delivery task per subscriber. Safe to call multiple times."""
        if self._running:
            return
        self._running = True
        for sub in self._subscriptions.values():
            sub.task = asyncio.create_task(self._deliver(sub))
        logger.info(f"RegimeEventBus started with {len(self._subscriptions)} subscribers")

    async def stop(self) -> None:
        """Cancel the delivery tasks. Safe to call multiple times."""
        if not self._running:
            return
        self._running = False
        for sub in self._subscriptions.values():
            await self._cancel(sub)
        logger.info("RegimeEventBus stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await asyncio.gather(*(sub.queue.join() for sub in self._subscriptions.values()))

    def get_stats(self) -> dict[str, SubscriberStats]:
        stats = {}
        for name, sub in self._subscriptions.items():
            sub.stats.pending = sub.queue.qsize()
            stats[name] = SubscriberStats(**vars(sub.stats))
        return stats

    async def _deliver(self, sub: _Subscription) -> None:
        while True:
            change = await sub.queue.get()
            try:
                await sub.handler(change)
                sub.stats.delivered += 1
            except Exception as e:
                sub.stats.failed += 1
                logger.exception(f"Error in regime change subscriber {sub.name}: {e}")
            finally:
                sub.queue.task_done()

    @staticmethod
    async def _cancel(sub: _Subscription) -> None:
        if sub.task is None:
            return
        sub.task.cancel()
        try:
            await sub.task
        except asyncio.CancelledError:
            pass
        sub.task = None

    def _write_fallback_log(self, subscriber: str, change: RegimeChange) -> None:
        if self._fallback_log_path is None:
            return

        try:
            log_entry = {
                "reason": "QueueFull",
                "subscriber": subscriber,
                "timestamp": change.timestamp.isoformat(),
                "old_regime": change.old_regime.value if change.old_regime else None,
                "new_regime": change.new_regime.value,
                "confidence": change.confidence,
                "reason_text": change.reason,
                "trigger_price": change.trigger_price,
            }
            with open(self._fallback_log_path, "a") as f:
                f.write(json.dumps(log_entry) + "\n")
        except Exception as e:
            logger.exception(f"Error writing fallback log: {e}")
