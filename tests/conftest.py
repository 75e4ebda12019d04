import pytest

from dynfee.config import EngineConfig
from dynfee.core import DYNAMIC_FEE_FLAG, PoolKey, TrackerState
from dynfee.fee_engine import ActivityFeeHook, FeeEngine, format_hook_address
from dynfee.pool import Pool, ValueIndex

T0 = 1_700_000_000
OWNER = "0xowner"


class Clock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def state():
    return TrackerState()


@pytest.fixture
def engine(state, clock):
    return FeeEngine(EngineConfig(), state, owner=OWNER, clock=clock)


@pytest.fixture
def hook_address():
    return format_hook_address(0xBEEF, ActivityFeeHook.PERMISSIONS)


@pytest.fixture
def hook(engine, hook_address):
    return ActivityFeeHook(engine, hook_address)


@pytest.fixture
def pool(hook, hook_address, state):
    key = PoolKey(currency0="ETH", currency1="USD", fee=DYNAMIC_FEE_FLAG, tick_spacing=60, hooks=hook_address)
    values = ValueIndex(ref_unit="USD")
    values.set_value("ETH", 2000.0)
    values.set_value("USD", 1.0)
    p = Pool(key=key, hook=hook, state=state, values=values)
    p.initialize(T0)
    p.seed("ETH", 1_000.0)
    p.seed("USD", 2_000_000.0)
    return p
