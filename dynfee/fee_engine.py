from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Callable, List, Optional
import logging
import re
import time

from .config import EngineConfig
from .core import (
    CallerNotAuthorized,
    Event,
    EventLog,
    HookAddressNotValid,
    InvalidConfig,
    NotDynamicFee,
    PoolKey,
    TrackerState,
)
from .fees import FeeComposer, MultiplierResolver, TierResolver
from .trackers import PoolActivityTracker, TraderActivityTracker

if TYPE_CHECKING:
    from .pool import BalanceDelta, SwapParams

logger = logging.getLogger(__name__)

# consumed once by the hook and the event log; update_config cannot change them
CONSTRUCTION_ONLY_FIELDS = frozenset({"validate_hook_address", "event_log_maxlen"})

def _wall_clock() -> int:
    return int(time.time())

@dataclass
class GlobalStats:
    window_count: int
    base_rate: int
    window_start: int

    def to_dict(self) -> dict:
        return {
            "window_count": int(self.window_count),
            "base_rate": int(self.base_rate),
            "window_start": int(self.window_start),
        }

@dataclass
class TraderStats:
    window_count: int
    multiplier: int
    lifetime_count: int

    def to_dict(self) -> dict:
        return {
            "window_count": int(self.window_count),
            "multiplier": int(self.multiplier),
            "lifetime_count": int(self.lifetime_count),
        }

class FeeEngine:
    """
    Windowed activity fee engine.

    A trade goes through quote() (read-only, returns the fee to charge) and
    then settle() (records the trade). The fee for the Nth trade in a window
    therefore reflects only the N-1 trades before it. The host must call both
    for the same trade in that order, with no other trade on the same pool in
    between; settle() writes are journaled by the TrackerState so an
    enclosing transaction can discard them.
    """
    def __init__(
        self,
        cfg: EngineConfig,
        state: TrackerState,
        owner: str,
        log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.state = state
        self.owner = owner
        self.log = log if log is not None else EventLog(maxlen=cfg.event_log_maxlen)
        self.clock = clock or _wall_clock
        self._apply_config(cfg)

    def _apply_config(self, cfg: EngineConfig) -> None:
        self.cfg = cfg
        self.tiers = TierResolver.from_config(cfg)
        self.multipliers = MultiplierResolver.from_config(cfg)
        self.composer = FeeComposer(cfg.max_fee)
        self.pool_tracker = PoolActivityTracker(
            self.state.pools, cfg.global_window_seconds, self.tiers, self.log,
            notify_counts=cfg.surge_notify_counts,
        )
        self.trader_tracker = TraderActivityTracker(
            self.state.traders, cfg.user_window_seconds, self.multipliers, self.log,
            notify_counts=cfg.spam_notify_counts,
        )

    def _now(self, now: Optional[int]) -> int:
        return int(self.clock() if now is None else now)

    def _fee_at(self, pool_id: str, trader: str, now: int) -> int:
        base = self.tiers.rate(self.pool_tracker.current_count(pool_id, now))
        mult = self.multipliers.multiplier(self.trader_tracker.current_count(pool_id, trader, now))
        return self.composer.compose(base, mult)

    # -----------------------------
    # Two-phase trade lifecycle
    # -----------------------------
    def quote(self, pool_id: str, trader: str, now: Optional[int] = None) -> int:
        now = self._now(now)
        with self.state.pools.lock(pool_id), self.state.traders.lock((pool_id, trader)):
            fee = self._fee_at(pool_id, trader, now)
        logger.debug("[FEE] pool=%s trader=%s fee=%d", pool_id, trader, fee)
        self.log.add(Event(now, "FEE_APPLIED", pool_id=pool_id, trader=trader, amount=fee))
        return fee

    def settle(self, pool_id: str, trader: str, now: Optional[int] = None) -> None:
        now = self._now(now)
        outbox: List[Event] = []
        with self.state.pools.lock(pool_id):
            self.pool_tracker.record(pool_id, now, outbox)
            with self.state.traders.lock((pool_id, trader)):
                self.trader_tracker.record(pool_id, trader, now, outbox)
        # subscribers may call back into the engine, so publish with no key locks held
        for e in outbox:
            self.log.add(e)

    # -----------------------------
    # Queries
    # -----------------------------
    def current_fee(self, pool_id: str, trader: str, now: Optional[int] = None) -> int:
        return self._fee_at(pool_id, trader, self._now(now))

    def surge_level(self, pool_id: str, now: Optional[int] = None) -> int:
        return self.tiers.level(self.pool_tracker.current_count(pool_id, self._now(now)))

    def global_stats(self, pool_id: str, now: Optional[int] = None) -> GlobalStats:
        now = self._now(now)
        win = self.pool_tracker.window(pool_id)
        count = win.current_count(now, self.pool_tracker.duration)
        return GlobalStats(window_count=count, base_rate=self.tiers.rate(count), window_start=win.window_start)

    def trader_stats(self, pool_id: str, trader: str, now: Optional[int] = None) -> TraderStats:
        now = self._now(now)
        win = self.trader_tracker.window(pool_id, trader)
        count = win.current_count(now, self.trader_tracker.duration)
        return TraderStats(
            window_count=count,
            multiplier=self.multipliers.multiplier(count),
            lifetime_count=win.lifetime_count,
        )

    # -----------------------------
    # Administration
    # -----------------------------
    def update_config(self, caller: str, **changes: Any) -> EngineConfig:
        if caller != self.owner:
            raise CallerNotAuthorized(f"{caller} is not the engine owner")
        known = {f.name for f in fields(EngineConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise InvalidConfig(f"unknown config fields: {', '.join(unknown)}")
        fixed = sorted(set(changes) & CONSTRUCTION_ONLY_FIELDS)
        if fixed:
            raise InvalidConfig(f"fields fixed at construction: {', '.join(fixed)}")
        cfg = replace(self.cfg, **changes)
        self._apply_config(cfg)
        logger.info("config updated by %s: %s", caller, sorted(changes))
        self.log.add(Event(self.clock(), "CONFIG_UPDATED", trader=caller, meta=dict(changes)))
        return cfg


# -----------------------------
# Host-facing hook adapter
# -----------------------------
BEFORE_INITIALIZE_FLAG = 1 << 13
BEFORE_SWAP_FLAG = 1 << 7
AFTER_SWAP_FLAG = 1 << 6
ALL_HOOK_MASK = (1 << 14) - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

def hook_flags(address: str) -> int:
    if not _ADDRESS_RE.match(address or ""):
        raise HookAddressNotValid(f"malformed hook address: {address!r}")
    return int(address, 16) & ALL_HOOK_MASK

def format_hook_address(prefix: int, flags: int) -> str:
    """Address whose permission bits are exactly `flags`; `prefix` fills the upper bits."""
    value = ((int(prefix) << 14) | (flags & ALL_HOOK_MASK)) & ((1 << 160) - 1)
    return f"0x{value:040x}"

class ActivityFeeHook:
    """
    Adapter the swap pipeline calls. Holds no state of its own; before_swap
    runs FeeEngine.quote and after_swap runs FeeEngine.settle.
    """
    PERMISSIONS = BEFORE_INITIALIZE_FLAG | BEFORE_SWAP_FLAG | AFTER_SWAP_FLAG

    def __init__(self, engine: FeeEngine, address: str, validate_address: Optional[bool] = None) -> None:
        self.engine = engine
        self.address = address.lower()
        self.validate_address = engine.cfg.validate_hook_address if validate_address is None else validate_address
        if self.validate_address:
            flags = hook_flags(address)
            if flags != self.PERMISSIONS:
                raise HookAddressNotValid(
                    f"hook address {address} has flags {flags:#06x}, expected {self.PERMISSIONS:#06x}"
                )
        else:
            logger.warning("hook address validation disabled for %s", address)

    def before_initialize(self, key: PoolKey, now: Optional[int] = None) -> None:
        if key.hooks.lower() != self.address:
            raise HookAddressNotValid(f"pool {key.pool_id} is wired to {key.hooks}, not {self.address}")
        if not key.is_dynamic_fee:
            raise NotDynamicFee(f"pool fee {key.fee:#x} is static")
        self.engine.log.add(Event(self.engine._now(now), "POOL_INITIALIZED", pool_id=key.pool_id,
                                  meta={"currency0": key.currency0, "currency1": key.currency1}))

    def before_swap(self, trader: str, key: PoolKey, params: "SwapParams", now: Optional[int] = None) -> int:
        return self.engine.quote(key.pool_id, trader, now)

    def after_swap(self, trader: str, key: PoolKey, params: "SwapParams", delta: "BalanceDelta",
                   now: Optional[int] = None) -> bool:
        self.engine.settle(key.pool_id, trader, now)
        return True
