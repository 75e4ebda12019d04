import pytest

from dynfee.config import EngineConfig
from dynfee.fees import FeeComposer, MultiplierResolver, TierResolver

TIER_RATES = {100, 500, 2_500, 10_000, 50_000, 150_000, 250_000}
MULTIPLIERS = {1, 3, 6, 10}


@pytest.fixture
def tiers():
    return TierResolver.from_config(EngineConfig())


@pytest.fixture
def multipliers():
    return MultiplierResolver.from_config(EngineConfig())


class TestTierResolver:
    @pytest.mark.parametrize("count,rate", [
        (0, 100), (4, 100), (5, 500), (14, 500), (15, 2_500), (29, 2_500),
        (30, 10_000), (59, 10_000), (60, 50_000), (99, 50_000),
        (100, 150_000), (149, 150_000), (150, 250_000), (10_000, 250_000),
    ])
    def test_threshold_boundaries(self, tiers, count, rate):
        assert tiers.rate(count) == rate

    def test_monotonic_non_decreasing(self, tiers):
        rates = [tiers.rate(c) for c in range(0, 400)]
        assert all(a <= b for a, b in zip(rates, rates[1:]))

    def test_range_is_closed(self, tiers):
        assert {tiers.rate(c) for c in range(0, 400)} == TIER_RATES

    @pytest.mark.parametrize("count,level", [(0, 0), (4, 0), (5, 1), (15, 2), (30, 3), (60, 4), (100, 5), (150, 6), (999, 6)])
    def test_level_index(self, tiers, count, level):
        assert tiers.level(count) == level


class TestMultiplierResolver:
    @pytest.mark.parametrize("count,mult", [(0, 1), (2, 1), (3, 3), (4, 3), (5, 6), (7, 6), (8, 10), (50, 10)])
    def test_threshold_boundaries(self, multipliers, count, mult):
        assert multipliers.multiplier(count) == mult

    def test_range_is_closed(self, multipliers):
        assert {multipliers.multiplier(c) for c in range(0, 100)} == MULTIPLIERS


class TestFeeComposer:
    def test_never_exceeds_cap(self):
        composer = FeeComposer(500_000)
        for base in sorted(TIER_RATES):
            for mult in MULTIPLIERS:
                assert composer.compose(base, mult) <= 500_000

    def test_saturates_top_tier_times_max_multiplier(self):
        # 250000 * 10 = 2.5M, clamped
        assert FeeComposer(500_000).compose(250_000, 10) == 500_000

    def test_below_cap_is_exact_product(self):
        assert FeeComposer(500_000).compose(2_500, 6) == 15_000

    def test_large_operands_do_not_wrap(self):
        assert FeeComposer(500_000).compose(2**40, 2**40) == 500_000
