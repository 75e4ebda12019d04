from __future__ import annotations
from typing import Iterable, List, Optional
import logging

from .core import ActivityWindow, Event, EventLog, KeyedStore, TraderActivityWindow
from .fees import MultiplierResolver, TierResolver

logger = logging.getLogger(__name__)

def _emit(log: EventLog, outbox: Optional[List[Event]], e: Event) -> None:
    if outbox is None:
        log.add(e)
    else:
        outbox.append(e)

class PoolActivityTracker:
    def __init__(
        self,
        store: KeyedStore[str, ActivityWindow],
        duration: int,
        tiers: TierResolver,
        log: EventLog,
        notify_counts: Iterable[int] = (),
    ) -> None:
        self.store = store
        self.duration = int(duration)
        self.tiers = tiers
        self.log = log
        self.notify_counts = frozenset(notify_counts)

    def window(self, pool_id: str) -> ActivityWindow:
        return self.store.get(pool_id)

    def current_count(self, pool_id: str, now: int) -> int:
        # expiry is observed here but only committed by record()
        return self.store.get(pool_id).current_count(now, self.duration)

    def record(self, pool_id: str, now: int, outbox: Optional[List[Event]] = None) -> ActivityWindow:
        """Record one trade. Notifications go to `outbox` when given, else straight to the log."""
        prev = self.store.get(pool_id)
        win = prev.advance(now, self.duration)
        self.store.put(pool_id, win)
        if win.count == 1 and logger.isEnabledFor(logging.DEBUG):
            logger.debug("[WINDOW] pool=%s reset start=%d prev_count=%d", pool_id, now, prev.count)
        if win.count in self.notify_counts:
            rate = self.tiers.rate(win.count)
            logger.info("[SURGE] pool=%s window_count=%d base_rate=%d", pool_id, win.count, rate)
            _emit(self.log, outbox, Event(now, "SURGE_LEVEL", pool_id=pool_id,
                                          meta={"window_count": win.count, "base_rate": rate}))
        return win

class TraderActivityTracker:
    def __init__(
        self,
        store: KeyedStore[tuple[str, str], TraderActivityWindow],
        duration: int,
        multipliers: MultiplierResolver,
        log: EventLog,
        notify_counts: Iterable[int] = (),
    ) -> None:
        self.store = store
        self.duration = int(duration)
        self.multipliers = multipliers
        self.log = log
        self.notify_counts = frozenset(notify_counts)

    def window(self, pool_id: str, trader: str) -> TraderActivityWindow:
        return self.store.get((pool_id, trader))

    def current_count(self, pool_id: str, trader: str, now: int) -> int:
        return self.store.get((pool_id, trader)).current_count(now, self.duration)

    def lifetime_count(self, pool_id: str, trader: str) -> int:
        return self.store.get((pool_id, trader)).lifetime_count

    def record(self, pool_id: str, trader: str, now: int,
               outbox: Optional[List[Event]] = None) -> TraderActivityWindow:
        key = (pool_id, trader)
        prev = self.store.get(key)
        win = prev.advance(now, self.duration)
        self.store.put(key, win)
        if win.count == 1 and logger.isEnabledFor(logging.DEBUG):
            logger.debug("[WINDOW] pool=%s trader=%s reset start=%d lifetime=%d",
                         pool_id, trader, now, win.lifetime_count)
        if win.count in self.notify_counts:
            mult = self.multipliers.multiplier(win.count)
            logger.info("[SPAM] pool=%s trader=%s window_count=%d multiplier=%d",
                        pool_id, trader, win.count, mult)
            _emit(self.log, outbox, Event(now, "SPAM_DETECTED", pool_id=pool_id, trader=trader,
                                          meta={"window_count": win.count, "multiplier": mult}))
        return win
