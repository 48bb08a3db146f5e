"""Debounced tools/list_changed notifications, one state machine per session."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Transport-side delivery of list-changed signals."""

    @abstractmethod
    async def notify(self, session_id: str, revision: int) -> None:
        """Deliver one signal. Raise to report the session as dead."""
        ...


class SubscriptionState(str, Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"


@dataclass
class Subscription:
    session_id: str
    last_revision: int = 0
    state: SubscriptionState = SubscriptionState.IDLE
    timer: asyncio.TimerHandle | None = None
    delivery_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ChangeNotifier:
    """Coalesces index mutations into one signal per debounce window.

    ``observe`` moves every Idle subscription to PendingDebounce and arms a
    single event-loop timer for it; mutations arriving while the timer is
    armed leave it untouched. When the timer fires the subscription returns
    to Idle and the latest known revision is delivered. Deliveries run as
    separate tasks, serialized per subscription, so a slow session never
    delays the others and never sees a revision go backwards.
    """

    def __init__(self, sink: NotificationSink, debounce_window: float = 0.15, enabled: bool = True):
        self._sink = sink
        self.debounce_window = debounce_window if debounce_window > 0 else 0.15
        self.enabled = enabled
        self._subscriptions: dict[str, Subscription] = {}
        self._latest_revision = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        self.delivered_count = 0

    @property
    def latest_revision(self) -> int:
        return self._latest_revision

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, session_id: str, last_revision: int | None = None) -> Subscription:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        existing = self._subscriptions.get(session_id)
        if existing is not None:
            return existing
        sub = Subscription(
            session_id=session_id,
            last_revision=self._latest_revision if last_revision is None else last_revision,
        )
        self._subscriptions[session_id] = sub
        return sub

    def unsubscribe(self, session_id: str) -> None:
        sub = self._subscriptions.pop(session_id, None)
        if sub is not None and sub.timer is not None:
            sub.timer.cancel()
            sub.timer = None

    def state(self, session_id: str) -> SubscriptionState | None:
        sub = self._subscriptions.get(session_id)
        return sub.state if sub else None

    def __len__(self) -> int:
        return len(self._subscriptions)

    # ------------------------------------------------------------------
    # Index observation
    # ------------------------------------------------------------------

    def observe(self, revision: int) -> None:
        """Index mutation hook. Only schedules; never waits on delivery."""
        if revision > self._latest_revision:
            self._latest_revision = revision
        if not self.enabled or self._loop is None or self._loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._arm_timers()
        else:
            self._loop.call_soon_threadsafe(self._arm_timers)

    def _arm_timers(self) -> None:
        for sub in self._subscriptions.values():
            if sub.state is SubscriptionState.IDLE:
                sub.state = SubscriptionState.PENDING_DEBOUNCE
                sub.timer = self._loop.call_later(self.debounce_window, self._on_timer, sub.session_id)

    def _on_timer(self, session_id: str) -> None:
        sub = self._subscriptions.get(session_id)
        if sub is None:
            return
        sub.timer = None
        sub.state = SubscriptionState.IDLE

        revision = self._latest_revision
        if not self.enabled or revision <= sub.last_revision:
            return
        logger.debug("Debounce window closed for %s at revision %d", session_id, revision)
        task = self._loop.create_task(self._deliver(sub, revision))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, sub: Subscription, revision: int) -> None:
        async with sub.delivery_lock:
            if revision <= sub.last_revision:
                return
            try:
                await self._sink.notify(sub.session_id, revision)
            except Exception as e:
                logger.warning("Dropping subscription %s after failed delivery: %s", sub.session_id, e)
                self.unsubscribe(sub.session_id)
                return
            sub.last_revision = revision
            self.delivered_count += 1

    async def close(self) -> None:
        """Cancel armed timers and in-flight deliveries."""
        for sub in self._subscriptions.values():
            if sub.timer is not None:
                sub.timer.cancel()
                sub.timer = None
            sub.state = SubscriptionState.IDLE
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._subscriptions.clear()
