from __future__ import annotations
from typing import Dict, List, Optional
import logging
import numpy as np
import pandas as pd
import random

from .config import ScenarioConfig
from .core import Event, EventLog, TrackerState
from .factory import PoolFactory, Trader
from .fee_engine import ActivityFeeHook, FeeEngine, format_hook_address
from .metrics import MetricsStore
from .pool import Pool, SwapReceipt

logger = logging.getLogger(__name__)

class SimulationEngine:
    """
    Tick-driven traffic simulator: casual and spam traders swapping through
    pools whose fees come from a shared FeeEngine.
    """
    def __init__(self, cfg: ScenarioConfig, seed: int = 1, owner: str = "owner") -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)

        self.tick: int = 0
        self.now: int = int(cfg.start_time)
        self.log = EventLog(maxlen=cfg.engine.event_log_maxlen)
        self.metrics = MetricsStore()
        self.state = TrackerState()

        self.fee_engine = FeeEngine(cfg.engine, self.state, owner=owner, log=self.log, clock=lambda: self.now)
        self.hook_address = format_hook_address(seed, ActivityFeeHook.PERMISSIONS)
        self.hook = ActivityFeeHook(self.fee_engine, self.hook_address)
        self.factory = PoolFactory(cfg, self.hook, self.hook_address, self.state, self.np_rng)

        self.pools: Dict[str, Pool] = {}
        self.traders: List[Trader] = []
        self._home_pool: Dict[str, str] = {}

        self._swaps_tick: int = 0
        self._failed_tick: int = 0
        self._fees_usd_tick: float = 0.0
        self._fee_ppm_by_kind: Dict[str, List[int]] = {"casual": [], "spam": []}
        self._fees_usd_by_pool: Dict[str, float] = {}

        self._bootstrap()

    def _bootstrap(self) -> None:
        for _ in range(self.cfg.initial_pools):
            self.add_pool()
        for trader in self.factory.create_traders():
            self.add_trader(trader)
        self.snapshot_metrics(force_network=True, force_pool=True)

    def add_pool(self) -> Pool:
        pool = self.factory.create_pool(self.now)
        self.pools[pool.pool_id] = pool
        logger.info("pool created id=%s pair=%s/%s", pool.pool_id[:10], pool.key.currency0, pool.key.currency1)
        return pool

    def add_trader(self, trader: Trader) -> None:
        self.traders.append(trader)
        if trader.kind == "spam" and self.pools:
            # spammers hammer one pool
            self._home_pool[trader.trader_id] = self.rng.choice(sorted(self.pools))

    def _asset_value(self, pool: Pool, asset_id: str) -> float:
        return pool.values.get_value(asset_id)

    def _trades_for(self, trader: Trader) -> int:
        cfg = self.cfg
        if trader.kind == "spam":
            if self.rng.random() >= cfg.p_spam_trade_per_tick:
                return 0
            return 1 + int(self.np_rng.poisson(max(0.0, cfg.spam_burst_mean)))
        return 1 if self.rng.random() < cfg.p_casual_trade_per_tick else 0

    def _choose_pool(self, trader: Trader) -> Optional[Pool]:
        if not self.pools:
            return None
        home = self._home_pool.get(trader.trader_id)
        if home is not None and home in self.pools:
            return self.pools[home]
        return self.pools[self.rng.choice(sorted(self.pools))]

    def execute_trade(self, trader: Trader, pool: Pool) -> SwapReceipt:
        pair = [pool.key.currency0, pool.key.currency1]
        self.rng.shuffle(pair)
        asset_in, asset_out = pair
        usd = float(self.np_rng.exponential(self.cfg.trade_size_mean_usd))
        amount_in = usd / max(1e-9, self._asset_value(pool, asset_in))

        min_out = 0.0
        if self.cfg.slippage_tolerance is not None:
            fee_now = self.fee_engine.current_fee(pool.pool_id, trader.trader_id)
            okq, _, expected, _ = pool.quote_swap(asset_in, amount_in, asset_out, fee_now)
            if okq:
                min_out = expected * (1.0 - self.cfg.slippage_tolerance)

        receipt = pool.execute_swap(self.now, trader.trader_id, asset_in, amount_in, asset_out,
                                    min_amount_out=min_out)
        if receipt.status != "executed":
            self._failed_tick += 1
            self.log.add(Event(self.now, "SWAP_FAILED", pool_id=pool.pool_id, trader=trader.trader_id,
                               amount=amount_in, meta={"reason": receipt.fail_reason}))
            return receipt

        fee_usd = receipt.fee_amount * self._asset_value(pool, receipt.asset_out)
        self._swaps_tick += 1
        self._fees_usd_tick += fee_usd
        self._fees_usd_by_pool[pool.pool_id] = self._fees_usd_by_pool.get(pool.pool_id, 0.0) + fee_usd
        self._fee_ppm_by_kind[trader.kind].append(receipt.fee_ppm)
        self.log.add(Event(self.now, "SWAP_EXECUTED", pool_id=pool.pool_id, trader=trader.trader_id,
                           amount=receipt.amount_in, meta={"receipt": receipt.to_dict()}))
        return receipt

    def step(self, n_ticks: int = 1) -> None:
        for _ in range(n_ticks):
            self.tick += 1
            self.now += int(self.cfg.tick_seconds)
            self._swaps_tick = 0
            self._failed_tick = 0
            self._fees_usd_tick = 0.0
            self._fee_ppm_by_kind = {"casual": [], "spam": []}

            order = list(self.traders)
            self.rng.shuffle(order)
            for trader in order:
                for _ in range(self._trades_for(trader)):
                    pool = self._choose_pool(trader)
                    if pool is None:
                        break
                    self.execute_trade(trader, pool)

            self.snapshot_metrics()

    def trader_stats_df(self) -> pd.DataFrame:
        rows = []
        kinds = {t.trader_id: t.kind for t in self.traders}
        for (pool_id, trader_id), _win in self.state.traders.items():
            stats = self.fee_engine.trader_stats(pool_id, trader_id)
            rows.append({
                "pool_id": pool_id[:10],
                "trader": trader_id,
                "kind": kinds.get(trader_id, "unknown"),
                **stats.to_dict(),
                "current_fee_ppm": self.fee_engine.current_fee(pool_id, trader_id),
            })
        return pd.DataFrame(rows)

    def snapshot_metrics(self, force_network: bool = False, force_pool: bool = False) -> None:
        cfg = self.cfg
        metrics_stride = int(cfg.metrics_stride or 0)
        pool_stride = int(cfg.pool_metrics_stride or 0)
        do_network = force_network or (metrics_stride > 0 and self.tick % metrics_stride == 0)
        do_pool = force_pool or (pool_stride > 0 and self.tick % pool_stride == 0)

        levels = {pid: self.fee_engine.surge_level(pid) for pid in self.pools}
        if do_pool:
            rows = []
            for pid, p in self.pools.items():
                stats = self.fee_engine.global_stats(pid)
                rows.append({
                    "tick": self.tick,
                    "time": self.now,
                    "pool_id": pid[:10],
                    "pair": f"{p.key.currency0}/{p.key.currency1}",
                    "window_count": stats.window_count,
                    "base_rate_ppm": stats.base_rate,
                    "surge_level": levels[pid],
                    "swaps_total": sum(1 for r in p.receipts.receipts if r.status == "executed"),
                    "fees_usd_total": float(self._fees_usd_by_pool.get(pid, 0.0)),
                })
            self.metrics.add_pool_rows(rows)

        if do_network:
            surge_events = 0
            spam_events = 0
            for e in reversed(self.log.events):
                if e.timestamp != self.now:
                    if e.timestamp < self.now:
                        break
                    continue
                if e.event_type == "SURGE_LEVEL":
                    surge_events += 1
                elif e.event_type == "SPAM_DETECTED":
                    spam_events += 1
            casual = self._fee_ppm_by_kind["casual"]
            spam = self._fee_ppm_by_kind["spam"]
            self.metrics.add_network({
                "tick": self.tick,
                "time": self.now,
                "num_pools": len(self.pools),
                "num_traders": len(self.traders),
                "swaps_tick": self._swaps_tick,
                "failed_swaps_tick": self._failed_tick,
                "fees_usd_tick": float(self._fees_usd_tick),
                "fee_ppm_mean_casual": float(np.mean(casual)) if casual else 0.0,
                "fee_ppm_mean_spam": float(np.mean(spam)) if spam else 0.0,
                "surge_events_tick": surge_events,
                "spam_events_tick": spam_events,
                "max_surge_level": max(levels.values()) if levels else 0,
            })
