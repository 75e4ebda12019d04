from dataclasses import dataclass, field

from .core import InvalidConfig

TierTable = tuple[tuple[int, int], ...]

@dataclass(frozen=True)
class EngineConfig:
    # Windows (seconds)
    global_window_seconds: int = 3600
    user_window_seconds: int = 300

    # Fees (ppm of trade value)
    base_fee: int = 100  # TIER_0, below every threshold
    tier_table: TierTable = (
        (5, 500),
        (15, 2_500),
        (30, 10_000),
        (60, 50_000),
        (100, 150_000),
        (150, 250_000),
    )
    multiplier_table: TierTable = (
        (3, 3),
        (5, 6),
        (8, 10),
    )
    max_fee: int = 500_000  # 50%

    # Notifications fire on exact equality with these counts only
    surge_notify_counts: tuple[int, ...] = (30, 100, 150)
    spam_notify_counts: tuple[int, ...] = (4, 7, 10)

    # Hook deployment
    validate_hook_address: bool = True
    event_log_maxlen: int | None = None

    def __post_init__(self) -> None:
        if self.global_window_seconds <= 0 or self.user_window_seconds <= 0:
            raise InvalidConfig("window durations must be positive")
        _check_table("tier_table", self.tier_table)
        _check_table("multiplier_table", self.multiplier_table)
        if self.base_fee < 0:
            raise InvalidConfig("base_fee must be non-negative")
        if self.tier_table and self.base_fee > self.tier_table[0][1]:
            raise InvalidConfig("base_fee must not exceed the first tier rate")
        if self.max_fee < self.base_fee:
            raise InvalidConfig("max_fee must be >= base_fee")
        if any(m < 1 for _, m in self.multiplier_table):
            raise InvalidConfig("multipliers must be >= 1")


def _check_table(name: str, table: TierTable) -> None:
    prev_threshold, prev_value = None, None
    for threshold, value in table:
        if threshold < 0 or value < 0:
            raise InvalidConfig(f"{name}: negative entry ({threshold}, {value})")
        if prev_threshold is not None and (threshold <= prev_threshold or value <= prev_value):
            raise InvalidConfig(f"{name}: thresholds and values must be strictly increasing")
        prev_threshold, prev_value = threshold, value


@dataclass
class ScenarioConfig:
    # Network
    initial_pools: int = 3
    stable_symbol: str = "USD"
    initial_liquidity_per_asset: float = 1_000_000.0
    assets_per_pool: int = 2

    # Trader population
    casual_traders: int = 40
    spam_traders: int = 4
    p_casual_trade_per_tick: float = 0.02
    p_spam_trade_per_tick: float = 0.9
    spam_burst_mean: float = 3.0  # extra trades per active spam tick (poisson)
    trade_size_mean_usd: float = 250.0
    slippage_tolerance: float | None = None  # None disables min_amount_out

    # Clock
    start_time: int = 1_700_000_000
    tick_seconds: int = 30

    # Debug
    debug_inventory: bool = False

    # Metrics
    metrics_stride: int = 1
    pool_metrics_stride: int = 5

    engine: EngineConfig = field(default_factory=EngineConfig)

    def __post_init__(self) -> None:
        if self.tick_seconds <= 0:
            raise InvalidConfig("tick_seconds must be positive")
        self.assets_per_pool = max(2, int(self.assets_per_pool))
