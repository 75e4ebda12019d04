from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from dynfee.config import EngineConfig
from dynfee.core import CallerNotAuthorized, InvalidConfig

from .conftest import OWNER, T0

POOL = "0xpool"
ALICE = "0xalice"


def trade(engine, pool_id, trader, now):
    fee = engine.quote(pool_id, trader, now)
    engine.settle(pool_id, trader, now)
    return fee


class TestTwoPhaseLifecycle:
    def test_quote_is_read_only(self, engine, state):
        engine.quote(POOL, ALICE, T0)
        assert len(state.pools) == 0
        assert len(state.traders) == 0

    def test_quote_emits_fee_applied(self, engine):
        fee = engine.quote(POOL, ALICE, T0)
        events = engine.log.of_type("FEE_APPLIED")
        assert len(events) == 1
        assert (events[0].pool_id, events[0].trader, events[0].amount) == (POOL, ALICE, fee)

    def test_subscriber_can_call_back_into_engine(self, engine):
        fees = []

        def on_spam(event):
            if event.event_type == "SPAM_DETECTED":
                fees.append(engine.quote(event.pool_id, event.trader, event.timestamp))

        engine.log.subscribe(on_spam)

        def run():
            for i in range(4):
                trade(engine, POOL, ALICE, T0 + i)

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        worker.join(timeout=3)
        assert not worker.is_alive()
        # published after both locks are released, so the quote sees the committed 4th trade
        assert fees == [100 * 3]

    def test_failing_subscriber_does_not_break_quote(self, engine):
        seen = []

        def broken(event):
            raise RuntimeError("subscriber down")

        engine.log.subscribe(broken)
        engine.log.subscribe(seen.append)
        assert engine.quote(POOL, ALICE, T0) == 100
        assert [e.event_type for e in seen] == ["FEE_APPLIED"]

    def test_quote_does_not_see_the_trade_being_settled(self, engine):
        for i in range(4):
            trade(engine, POOL, ALICE, T0 + i)
        # 5th trade: counters hold 4 prior trades, pool tier 5 not reached yet
        assert engine.quote(POOL, ALICE, T0 + 4) == 100 * 3
        engine.settle(POOL, ALICE, T0 + 4)
        assert engine.current_fee(POOL, ALICE, T0 + 4) == 500 * 6

    def test_settle_records_pool_and_trader(self, engine):
        engine.settle(POOL, ALICE, T0)
        assert engine.global_stats(POOL, T0).window_count == 1
        assert engine.trader_stats(POOL, ALICE, T0).window_count == 1


class TestScenarios:
    def test_scenario_a_pool_tier_after_five_trades(self, engine):
        # 6 minutes apart: the trader window keeps expiring, the pool window does not
        fees = [trade(engine, POOL, ALICE, T0 + i * 360) for i in range(5)]
        assert fees == [100] * 5
        now = T0 + 4 * 360
        assert engine.surge_level(POOL, now) == 1
        assert engine.global_stats(POOL, now).base_rate == 500

    def test_scenario_b_multiplier_escalation(self, engine):
        fees = [trade(engine, POOL, ALICE, T0 + i * 10) for i in range(8)]
        # quote i sees i-1 prior trades: multipliers 1,1,1,3,3,6,6,6; base 500 from the 6th trade on
        assert fees == [100, 100, 100, 300, 300, 3_000, 3_000, 3_000]
        stats = engine.trader_stats(POOL, ALICE, T0 + 70)
        assert (stats.window_count, stats.multiplier) == (8, 10)
        spam = engine.log.of_type("SPAM_DETECTED")
        assert [e.meta["window_count"] for e in spam] == [4, 7]

    def test_scenario_c_window_reset_keeps_lifetime(self, engine):
        for i in range(5):
            trade(engine, POOL, ALICE, T0 + i * 10)
        sixth = T0 + 360
        assert engine.trader_stats(POOL, ALICE, sixth).window_count == 0
        fee = engine.quote(POOL, ALICE, sixth)
        # pool window still holds 5 trades
        assert fee == 500 * 1
        engine.settle(POOL, ALICE, sixth)
        stats = engine.trader_stats(POOL, ALICE, sixth)
        assert (stats.window_count, stats.lifetime_count) == (1, 6)
        assert engine.trader_tracker.window(POOL, ALICE).window_start == sixth

    def test_scenario_d_fee_saturates(self, engine):
        for i in range(142):
            engine.settle(POOL, f"0xbystander{i}", T0)
        for i in range(8):
            engine.settle(POOL, ALICE, T0 + i)
        now = T0 + 8
        assert engine.global_stats(POOL, now).base_rate == 250_000
        assert engine.trader_stats(POOL, ALICE, now).multiplier == 10
        assert engine.quote(POOL, ALICE, now) == 500_000


class TestQueries:
    def test_unknown_keys_are_zero_state(self, engine):
        assert engine.current_fee(POOL, ALICE, T0) == 100
        assert engine.surge_level(POOL, T0) == 0
        assert engine.global_stats(POOL, T0).to_dict() == {"window_count": 0, "base_rate": 100, "window_start": 0}
        assert engine.trader_stats(POOL, ALICE, T0).to_dict() == {"window_count": 0, "multiplier": 1, "lifetime_count": 0}

    def test_queries_default_to_engine_clock(self, engine, clock):
        clock.now = T0
        engine.settle(POOL, ALICE)
        assert engine.global_stats(POOL).window_count == 1
        clock.now = T0 + 3600
        assert engine.global_stats(POOL).window_count == 0
        assert engine.trader_stats(POOL, ALICE).lifetime_count == 1

    def test_queries_do_not_emit(self, engine):
        engine.current_fee(POOL, ALICE, T0)
        engine.surge_level(POOL, T0)
        engine.trader_stats(POOL, ALICE, T0)
        assert len(engine.log.events) == 0

    def test_traders_isolated_within_pool(self, engine):
        for i in range(8):
            trade(engine, POOL, ALICE, T0 + i)
        assert engine.trader_stats(POOL, "0xbob", T0 + 8).multiplier == 1
        assert engine.current_fee(POOL, "0xbob", T0 + 8) == 500


class TestTransactions:
    def test_rollback_discards_settle(self, engine, state):
        trade(engine, POOL, ALICE, T0)
        with pytest.raises(RuntimeError):
            with state.transaction():
                engine.settle(POOL, ALICE, T0 + 1)
                engine.settle(POOL, "0xbob", T0 + 1)
                raise RuntimeError("host aborted")
        assert engine.global_stats(POOL, T0 + 1).window_count == 1
        assert engine.trader_stats(POOL, ALICE, T0 + 1).lifetime_count == 1
        assert (POOL, "0xbob") not in state.traders

    def test_commit_keeps_settle(self, engine, state):
        with state.transaction():
            engine.settle(POOL, ALICE, T0)
        assert engine.trader_stats(POOL, ALICE, T0).lifetime_count == 1

    def test_nested_inner_rollback_keeps_outer(self, engine, state):
        with state.transaction():
            engine.settle(POOL, ALICE, T0)
            with pytest.raises(ValueError):
                with state.transaction():
                    engine.settle(POOL, ALICE, T0 + 1)
                    raise ValueError
        assert engine.global_stats(POOL, T0 + 1).window_count == 1

    def test_outer_rollback_undoes_committed_inner(self, engine, state):
        with pytest.raises(KeyError):
            with state.transaction():
                with state.transaction():
                    engine.settle(POOL, ALICE, T0)
                raise KeyError
        assert POOL not in state.pools


class TestConcurrency:
    def test_parallel_pools_are_independent(self, engine):
        pools = [f"0xpool{i}" for i in range(8)]

        def run(pool_id):
            for i in range(50):
                trade(engine, pool_id, ALICE, T0 + i)

        with ThreadPoolExecutor(max_workers=8) as ex:
            list(ex.map(run, pools))
        for pool_id in pools:
            assert engine.global_stats(pool_id, T0 + 50).window_count == 50
            assert engine.trader_stats(pool_id, ALICE, T0 + 50).lifetime_count == 50

    def test_shared_pool_counts_every_settle(self, engine):
        traders = [f"0xt{i}" for i in range(6)]

        def run(trader):
            for _ in range(40):
                engine.settle(POOL, trader, T0)

        with ThreadPoolExecutor(max_workers=6) as ex:
            list(ex.map(run, traders))
        assert engine.global_stats(POOL, T0).window_count == 240


class TestAdministration:
    def test_non_owner_rejected_and_state_unchanged(self, engine):
        before = engine.cfg
        with pytest.raises(CallerNotAuthorized):
            engine.update_config("0xmallory", user_window_seconds=1)
        assert engine.cfg is before

    def test_invalid_value_rejected(self, engine):
        before = engine.cfg
        with pytest.raises(InvalidConfig):
            engine.update_config(OWNER, max_fee=10)
        assert engine.cfg is before

    @pytest.mark.parametrize("field", ["validate_hook_address", "event_log_maxlen"])
    def test_construction_only_fields_rejected(self, engine, field):
        before = engine.cfg
        with pytest.raises(InvalidConfig):
            engine.update_config(OWNER, **{field: None})
        assert engine.cfg is before

    def test_unknown_field_rejected(self, engine):
        with pytest.raises(InvalidConfig):
            engine.update_config(OWNER, surge=True)

    def test_owner_update_applies(self, engine):
        engine.settle(POOL, ALICE, T0)
        engine.update_config(OWNER, user_window_seconds=10)
        assert engine.trader_stats(POOL, ALICE, T0 + 10).window_count == 0
        assert engine.log.of_type("CONFIG_UPDATED")[0].meta == {"user_window_seconds": 10}


class TestEngineConfig:
    def test_defaults(self):
        cfg = EngineConfig()
        assert (cfg.global_window_seconds, cfg.user_window_seconds) == (3600, 300)
        assert (cfg.base_fee, cfg.max_fee) == (100, 500_000)

    @pytest.mark.parametrize("kwargs", [
        {"global_window_seconds": 0},
        {"user_window_seconds": -1},
        {"tier_table": ((5, 500), (5, 600))},
        {"tier_table": ((5, 500), (10, 400))},
        {"base_fee": 1_000},
        {"multiplier_table": ((3, 0),)},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidConfig):
            EngineConfig(**kwargs)

    def test_invalid_config_is_a_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig(global_window_seconds=0)
