from .config import EngineConfig, ScenarioConfig
from .core import (
    CallerNotAuthorized,
    FeeEngineError,
    HookAddressNotValid,
    InvalidConfig,
    NotDynamicFee,
    PoolKey,
    SwapRejected,
    TrackerState,
)
from .fee_engine import ActivityFeeHook, FeeEngine

__all__ = [
    "ActivityFeeHook",
    "CallerNotAuthorized",
    "EngineConfig",
    "FeeEngine",
    "FeeEngineError",
    "HookAddressNotValid",
    "InvalidConfig",
    "NotDynamicFee",
    "PoolKey",
    "ScenarioConfig",
    "SwapRejected",
    "TrackerState",
]
