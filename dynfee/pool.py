from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Protocol, Tuple
import logging

from .core import PoolKey, SwapRejected, TrackerState

logger = logging.getLogger(__name__)

PPM = 1_000_000

def format_inventory(inv: Dict[str, float]) -> str:
    if not inv:
        return "(empty)"
    items = sorted(inv.items(), key=lambda kv: kv[0])
    return ", ".join(f"{asset}:{amount:.2f}" for asset, amount in items)

# -----------------------------
# Hook contract
# -----------------------------
@dataclass(frozen=True)
class SwapParams:
    zero_for_one: bool
    amount_in: float
    min_amount_out: float = 0.0

@dataclass(frozen=True)
class BalanceDelta:
    """Trader-side deltas: negative is paid into the pool, positive is received."""
    amount0: float
    amount1: float

class SwapHook(Protocol):
    def before_initialize(self, key: PoolKey, now: Optional[int] = None) -> None: ...

    def before_swap(self, trader: str, key: PoolKey, params: SwapParams, now: Optional[int] = None) -> int: ...

    def after_swap(self, trader: str, key: PoolKey, params: SwapParams, delta: BalanceDelta,
                   now: Optional[int] = None) -> bool: ...


# -----------------------------
# Pool components
# -----------------------------
class ValueIndex:
    def __init__(self, ref_unit: str = "USD") -> None:
        self.ref_unit = ref_unit
        self.values: Dict[str, float] = {}
        self.version: int = 1

    def set_value(self, asset_id: str, value: float) -> None:
        self.values[asset_id] = max(0.0, float(value))
        self.version += 1

    def get_value(self, asset_id: str) -> float:
        return float(self.values.get(asset_id, 0.0))

class Vault:
    def __init__(self) -> None:
        self.inventory: Dict[str, float] = {}

    def get(self, asset_id: str) -> float:
        return float(self.inventory.get(asset_id, 0.0))

    def add(self, asset_id: str, amount: float) -> None:
        self.inventory[asset_id] = self.get(asset_id) + float(amount)

    def sub(self, asset_id: str, amount: float) -> bool:
        amt = float(amount)
        if self.get(asset_id) + 1e-9 < amt:
            return False
        self.inventory[asset_id] = self.get(asset_id) - amt
        if self.inventory[asset_id] <= 1e-12:
            self.inventory.pop(asset_id, None)
        return True


# -----------------------------
# Receipts
# -----------------------------
@dataclass
class SwapReceipt:
    timestamp: int
    pool_id: str
    trader: str
    asset_in: str
    amount_in: float
    asset_out: str
    amount_out: float
    fee_ppm: int
    fee_amount: float
    status: Literal["executed", "failed"]
    fail_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "pool_id": self.pool_id,
            "trader": self.trader,
            "asset_in": self.asset_in,
            "amount_in": float(self.amount_in),
            "asset_out": self.asset_out,
            "amount_out": float(self.amount_out),
            "fee_ppm": int(self.fee_ppm),
            "fee_amount": float(self.fee_amount),
            "status": self.status,
            "fail_reason": self.fail_reason,
        }

class ReceiptStore:
    def __init__(self) -> None:
        self.receipts: List[SwapReceipt] = []

    def add(self, r: SwapReceipt) -> None:
        self.receipts.append(r)

    def tail(self, n: int = 200) -> List[SwapReceipt]:
        return self.receipts[-n:]


# -----------------------------
# Pool
# -----------------------------
class Pool:
    """
    Swap pipeline around one pool key. Each swap runs inside a tracker
    transaction: fee from the hook, vault moves, then the hook's after_swap.
    A rejection at any point undoes both the vault moves and the tracker writes.
    """
    def __init__(self, key: PoolKey, hook: SwapHook, state: TrackerState, values: ValueIndex) -> None:
        self.key = key
        self.pool_id = key.pool_id
        self.hook = hook
        self.state = state
        self.values = values
        self.vault = Vault()
        self.receipts = ReceiptStore()
        self.paused: bool = False
        self.debug_inventory: bool = False
        self.fee_ledger: Dict[str, float] = {}  # by asset

    def initialize(self, now: Optional[int] = None) -> None:
        self.hook.before_initialize(self.key, now)

    def seed(self, asset_id: str, amount: float) -> None:
        if asset_id not in (self.key.currency0, self.key.currency1):
            raise ValueError(f"{asset_id} is not traded by pool {self.pool_id}")
        self.vault.add(asset_id, amount)

    def _debug_inventory_change(self, action: str, trader: str, before: Dict[str, float],
                                after: Dict[str, float]) -> None:
        if not self.debug_inventory or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[INV] pool=%s action=%s trader=%s before={ %s } after={ %s }",
            self.pool_id[:10],
            action,
            trader,
            format_inventory(before),
            format_inventory(after),
        )

    def quote_swap(self, asset_in: str, amount_in: float, asset_out: str, fee_ppm: int) -> Tuple[bool, str, float, float]:
        vin = self.values.get_value(asset_in)
        vout = self.values.get_value(asset_out)
        if vin <= 0 or vout <= 0:
            return False, "missing_price", 0.0, 0.0
        amount_out_gross = amount_in * vin / vout
        fee_amount = amount_out_gross * fee_ppm / PPM
        amount_out_net = max(0.0, amount_out_gross - fee_amount)
        return True, "ok", amount_out_net, fee_amount

    def can_swap(self, asset_in: str, amount_in: float, asset_out: str, amount_out: float) -> Tuple[bool, str]:
        if self.paused:
            return False, "paused"
        pair = (self.key.currency0, self.key.currency1)
        if asset_in not in pair or asset_out not in pair or asset_in == asset_out:
            return False, "not_in_pool"
        if amount_in <= 0:
            return False, "zero_amount"
        if self.vault.get(asset_out) + 1e-9 < amount_out:
            return False, "insufficient_inventory"
        return True, "ok"

    def execute_swap(
        self,
        now: int,
        trader: str,
        asset_in: str,
        amount_in: float,
        asset_out: str,
        min_amount_out: float = 0.0,
    ) -> SwapReceipt:
        params = SwapParams(zero_for_one=asset_in == self.key.currency0, amount_in=amount_in,
                            min_amount_out=min_amount_out)
        inventory_before = dict(self.vault.inventory)
        fee_ppm = 0
        fee_amount = 0.0
        try:
            with self.state.transaction():
                fee_ppm = self.hook.before_swap(trader, self.key, params, now)
                okq, reasonq, amount_out, fee_amount = self.quote_swap(asset_in, amount_in, asset_out, fee_ppm)
                if not okq:
                    raise SwapRejected(reasonq)
                gross_out = amount_out + fee_amount
                ok, reason = self.can_swap(asset_in, amount_in, asset_out, gross_out)
                if not ok:
                    raise SwapRejected(reason)

                self.vault.add(asset_in, amount_in)
                # fee stays in the vault; only the net amount leaves
                if not self.vault.sub(asset_out, amount_out):
                    raise SwapRejected("insufficient_inventory")

                if params.zero_for_one:
                    delta = BalanceDelta(amount0=-amount_in, amount1=amount_out)
                else:
                    delta = BalanceDelta(amount0=amount_out, amount1=-amount_in)
                self.hook.after_swap(trader, self.key, params, delta, now)

                if amount_out + 1e-12 < min_amount_out:
                    raise SwapRejected("slippage_exceeded")
        except SwapRejected as exc:
            self.vault.inventory = inventory_before
            logger.debug("swap rejected pool=%s trader=%s reason=%s", self.pool_id[:10], trader, exc.reason)
            r = SwapReceipt(
                timestamp=now, pool_id=self.pool_id, trader=trader,
                asset_in=asset_in, amount_in=amount_in, asset_out=asset_out, amount_out=0.0,
                fee_ppm=fee_ppm, fee_amount=0.0,
                status="failed", fail_reason=exc.reason,
            )
            self.receipts.add(r)
            return r
        except BaseException:
            # tracker writes were already rolled back by the transaction
            self.vault.inventory = inventory_before
            raise

        self._debug_inventory_change("swap", trader, inventory_before, self.vault.inventory)
        self.fee_ledger[asset_out] = self.fee_ledger.get(asset_out, 0.0) + fee_amount

        r = SwapReceipt(
            timestamp=now, pool_id=self.pool_id, trader=trader,
            asset_in=asset_in, amount_in=amount_in, asset_out=asset_out, amount_out=amount_out,
            fee_ppm=fee_ppm, fee_amount=fee_amount,
            status="executed", fail_reason=None,
        )
        self.receipts.add(r)
        return r
