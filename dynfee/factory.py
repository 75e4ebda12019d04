from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Literal
import numpy as np

from .config import ScenarioConfig
from .core import DYNAMIC_FEE_FLAG, PoolKey, TrackerState
from .pool import Pool, SwapHook, ValueIndex

TraderKind = Literal["casual", "spam"]

@dataclass
class Trader:
    trader_id: str
    kind: TraderKind

class PoolFactory:
    def __init__(self, cfg: ScenarioConfig, hook: SwapHook, hook_address: str, state: TrackerState,
                 rng: np.random.Generator) -> None:
        self.cfg = cfg
        self.hook = hook
        self.hook_address = hook_address
        self.state = state
        self.rng = rng
        self.asset_values: Dict[str, float] = {cfg.stable_symbol: 1.0}

        self.trader_counter = 0
        self.pool_counter = 0

    def _new_trader_id(self) -> str:
        self.trader_counter += 1
        return f"trader_{self.trader_counter:04d}"

    def _new_asset_id(self) -> str:
        self.pool_counter += 1
        return f"TKN{self.pool_counter:04d}"

    def create_trader(self, kind: TraderKind) -> Trader:
        return Trader(trader_id=self._new_trader_id(), kind=kind)

    def create_traders(self) -> List[Trader]:
        traders = [self.create_trader("casual") for _ in range(max(0, self.cfg.casual_traders))]
        traders += [self.create_trader("spam") for _ in range(max(0, self.cfg.spam_traders))]
        return traders

    def create_pool(self, now: int) -> Pool:
        """New TOKEN/stable pool wired to the hook and seeded on both sides."""
        cfg = self.cfg
        asset_id = self._new_asset_id()
        # lognormal unit prices around 1 USD
        self.asset_values[asset_id] = float(self.rng.lognormal(mean=0.0, sigma=0.5))

        c0, c1 = sorted([asset_id, cfg.stable_symbol])
        key = PoolKey(currency0=c0, currency1=c1, fee=DYNAMIC_FEE_FLAG, tick_spacing=60, hooks=self.hook_address)
        values = ValueIndex(ref_unit=cfg.stable_symbol)
        for a in (c0, c1):
            values.set_value(a, self.asset_values[a])

        pool = Pool(key=key, hook=self.hook, state=self.state, values=values)
        pool.debug_inventory = cfg.debug_inventory
        pool.initialize(now)
        for a in (c0, c1):
            pool.seed(a, cfg.initial_liquidity_per_asset / max(1e-9, self.asset_values[a]))
        return pool
