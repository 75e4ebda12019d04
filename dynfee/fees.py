from __future__ import annotations
from typing import Sequence, Tuple

from .config import EngineConfig

class StepResolver:
    """
    Step function over an ascending (threshold, value) table. Evaluated from
    the highest threshold down; the first `count >= threshold` wins, otherwise
    the floor value applies.
    """
    def __init__(self, table: Sequence[Tuple[int, int]], floor: int) -> None:
        self.table = tuple(table)
        self.floor = int(floor)

    def level(self, count: int) -> int:
        for idx in range(len(self.table) - 1, -1, -1):
            if count >= self.table[idx][0]:
                return idx + 1
        return 0

    def value(self, count: int) -> int:
        lvl = self.level(count)
        if lvl == 0:
            return self.floor
        return self.table[lvl - 1][1]

    def values(self) -> Tuple[int, ...]:
        return (self.floor,) + tuple(v for _, v in self.table)

class TierResolver(StepResolver):
    @classmethod
    def from_config(cls, cfg: EngineConfig) -> TierResolver:
        return cls(cfg.tier_table, cfg.base_fee)

    def rate(self, count: int) -> int:
        return self.value(count)

class MultiplierResolver(StepResolver):
    @classmethod
    def from_config(cls, cfg: EngineConfig) -> MultiplierResolver:
        return cls(cfg.multiplier_table, 1)

    def multiplier(self, count: int) -> int:
        return self.value(count)

class FeeComposer:
    def __init__(self, max_fee: int) -> None:
        self.max_fee = int(max_fee)

    def compose(self, base: int, multiplier: int) -> int:
        # python ints don't overflow; the product is exact before clamping
        return min(int(base) * int(multiplier), self.max_fee)
