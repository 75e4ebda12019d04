from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from functools import cached_property
from typing import Callable, Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar
from collections import deque
import hashlib
import logging
import threading

logger = logging.getLogger(__name__)

# -----------------------------
# Errors
# -----------------------------
class FeeEngineError(Exception):
    pass

class CallerNotAuthorized(FeeEngineError):
    pass

class InvalidConfig(FeeEngineError, ValueError):
    pass

class HookAddressNotValid(FeeEngineError):
    pass

class NotDynamicFee(FeeEngineError):
    pass

class SwapRejected(FeeEngineError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    timestamp: int
    event_type: str
    pool_id: Optional[str] = None
    trader: Optional[str] = None
    amount: Optional[float] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)
        self._subscribers: List[Callable[[Event], None]] = []

    def subscribe(self, callback: Callable[[Event], None]) -> None:
        self._subscribers.append(callback)

    def add(self, e: Event) -> None:
        self.events.append(e)
        for callback in self._subscribers:
            try:
                callback(e)
            except Exception:
                logger.exception("event subscriber failed on %s", e.event_type)

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]


# -----------------------------
# Pool keys
# -----------------------------
DYNAMIC_FEE_FLAG = 0x800000

@dataclass(frozen=True)
class PoolKey:
    """Immutable pool configuration. The pool id is derived from it and never changes."""
    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str

    def __post_init__(self) -> None:
        if self.currency0 >= self.currency1:
            raise InvalidConfig(f"currencies out of order: {self.currency0} >= {self.currency1}")

    @cached_property
    def pool_id(self) -> str:
        encoded = "|".join([
            self.currency0,
            self.currency1,
            str(self.fee),
            str(self.tick_spacing),
            self.hooks.lower(),
        ])
        return "0x" + hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    @property
    def is_dynamic_fee(self) -> bool:
        return self.fee == DYNAMIC_FEE_FLAG


# -----------------------------
# Activity windows
# -----------------------------
@dataclass(frozen=True)
class ActivityWindow:
    count: int = 0
    window_start: int = 0

    def expired(self, now: int, duration: int) -> bool:
        return now >= self.window_start + duration

    def current_count(self, now: int, duration: int) -> int:
        if self.expired(now, duration):
            return 0
        return self.count

    def advance(self, now: int, duration: int) -> ActivityWindow:
        if self.expired(now, duration):
            return replace(self, count=1, window_start=now)
        return replace(self, count=self.count + 1)

@dataclass(frozen=True)
class TraderActivityWindow(ActivityWindow):
    lifetime_count: int = 0

    def advance(self, now: int, duration: int) -> TraderActivityWindow:
        nxt = ActivityWindow.advance(self, now, duration)
        return replace(nxt, lifetime_count=self.lifetime_count + 1)


# -----------------------------
# Keyed stores + transactions
# -----------------------------
K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()

class _Journal:
    def __init__(self) -> None:
        self.entries: List[Tuple["KeyedStore", Hashable, object]] = []
        self._seen: set = set()

    def note(self, store: "KeyedStore", key: Hashable, prior: object) -> None:
        mark = (id(store), key)
        if mark in self._seen:
            return
        self._seen.add(mark)
        self.entries.append((store, key, prior))

    def merge(self, child: "_Journal") -> None:
        for store, key, prior in child.entries:
            self.note(store, key, prior)

    def rollback(self) -> None:
        for store, key, prior in reversed(self.entries):
            store._restore(key, prior)
        self.entries.clear()
        self._seen.clear()

class KeyedStore(Generic[K, V]):
    """
    key -> value table with lazy-default-on-miss reads. Absent keys read as
    the default value and are only materialized by put().
    """
    def __init__(self, state: "TrackerState", default: Callable[[], V]) -> None:
        self._state = state
        self._default = default()
        self._rows: Dict[K, V] = {}
        self._locks: Dict[K, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: K) -> V:
        return self._rows.get(key, self._default)

    def put(self, key: K, value: V) -> None:
        journal = self._state.current_journal()
        if journal is not None:
            journal.note(self, key, self._rows.get(key, _MISSING))
        self._rows[key] = value

    def lock(self, key: K) -> threading.Lock:
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.Lock()
                self._locks[key] = lk
            return lk

    def _restore(self, key: K, prior: object) -> None:
        with self.lock(key):
            if prior is _MISSING:
                self._rows.pop(key, None)
            else:
                self._rows[key] = prior

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def items(self) -> List[Tuple[K, V]]:
        return list(self._rows.items())

class TrackerState:
    """
    Owns both tracker tables. Writes made inside transaction() are journaled
    per thread and discarded if the enclosing block raises.
    """
    def __init__(self) -> None:
        self.pools: KeyedStore[str, ActivityWindow] = KeyedStore(self, ActivityWindow)
        self.traders: KeyedStore[Tuple[str, str], TraderActivityWindow] = KeyedStore(self, TraderActivityWindow)
        self._local = threading.local()

    def _stack(self) -> List[_Journal]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = []
            self._local.stack = stack
        return stack

    def current_journal(self) -> Optional[_Journal]:
        stack = self._stack()
        return stack[-1] if stack else None

    @contextmanager
    def transaction(self) -> Iterator[_Journal]:
        stack = self._stack()
        journal = _Journal()
        stack.append(journal)
        try:
            yield journal
        except BaseException:
            stack.pop()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("[TX] rollback entries=%d", len(journal.entries))
            journal.rollback()
            raise
        stack.pop()
        if stack:
            stack[-1].merge(journal)
