import json
import time
import pandas as pd
import streamlit as st

from dynfee.config import ScenarioConfig
from dynfee.core import CallerNotAuthorized, InvalidConfig
from dynfee.engine import SimulationEngine

st.set_page_config(page_title="Activity Fee Simulator", layout="wide")


def get_engine() -> SimulationEngine:
    if "engine" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.seed = 1
        st.session_state.engine = SimulationEngine(cfg=cfg, seed=st.session_state.seed)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        cfg = ScenarioConfig()
        seed = 1
        st.session_state.cfg = cfg
        st.session_state.seed = seed
    else:
        cfg = st.session_state.get("cfg", ScenarioConfig())
        seed = st.session_state.get("seed", 1)
    st.session_state.engine = SimulationEngine(cfg=cfg, seed=seed)


engine = get_engine()

st.title("Windowed Activity Fee Simulator")
st.caption(f"1 tick = {engine.cfg.tick_seconds}s. Pool window "
           f"{engine.fee_engine.cfg.global_window_seconds}s, trader window "
           f"{engine.fee_engine.cfg.user_window_seconds}s.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _fmt(value: float) -> str:
    return f"{float(value):,.2f}"

def _fmt_ppm(value: float) -> str:
    return f"{float(value) / 10_000:.2f}%"

def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_event_meta(meta) -> str:
    if meta is None:
        return ""
    if isinstance(meta, str):
        return meta
    try:
        return json.dumps(meta, sort_keys=True)
    except TypeError:
        return str(meta)

def _fee_curve(engine: SimulationEngine, max_count: int = 200) -> pd.DataFrame:
    fe = engine.fee_engine
    rows = []
    for count in range(0, max_count + 1):
        rows.append({
            "window_count": count,
            "base_rate_ppm": fe.tiers.rate(count),
            "multiplier": fe.multipliers.multiplier(count),
        })
    return pd.DataFrame(rows)


with st.sidebar:
    st.header("Sim Controls")

    st.subheader("Run")
    if st.button("Restart simulation"):
        reset_engine(reset_config=True)
        engine = st.session_state.engine
        st.session_state.run_progress = 0.0
        st.session_state.run_progress_label = "Idle"
    st.caption("Restart resets the simulation to tick 0 with default settings.")
    if "seed" not in st.session_state:
        st.session_state.seed = 1
    st.number_input(
        "Random seed",
        min_value=1,
        max_value=100000,
        key="seed",
    )

    run_ticks = st.slider("Ticks to run", min_value=1, max_value=1000, value=120)
    c3, c4 = st.columns(2)
    run_one = c3.button("Step 1 tick")
    run_many = c4.button("Run N ticks")
    progress_label = st.session_state.get("run_progress_label", "Idle")
    progress_value = float(st.session_state.get("run_progress", 0.0))
    progress_bar = st.progress(progress_value, text=progress_label)
    if run_one:
        start_ts = time.time()
        engine.step(1)
        elapsed = time.time() - start_ts
        st.session_state.run_progress = 1.0
        st.session_state.run_progress_label = f"Run progress: 100% ({_fmt_duration(elapsed)})"
        progress_bar.progress(1.0, text=st.session_state.run_progress_label)
    if run_many:
        total = int(run_ticks)
        if total > 0:
            start_ts = time.time()
            for idx in range(total):
                engine.step(1)
                progress = (idx + 1) / total
                progress_bar.progress(progress, text=f"Run progress: {progress:.0%}")
            elapsed = time.time() - start_ts
            st.session_state.run_progress = 1.0
            st.session_state.run_progress_label = f"Run progress: 100% ({_fmt_duration(elapsed)})"
            progress_bar.progress(1.0, text=st.session_state.run_progress_label)
    st.caption(f"Current tick: {engine.tick}")

    st.subheader("Traffic")
    engine.cfg.p_casual_trade_per_tick = st.slider(
        "Casual trade probability / tick", 0.0, 1.0,
        float(engine.cfg.p_casual_trade_per_tick), step=0.01,
    )
    engine.cfg.p_spam_trade_per_tick = st.slider(
        "Spam trade probability / tick", 0.0, 1.0,
        float(engine.cfg.p_spam_trade_per_tick), step=0.05,
    )
    engine.cfg.spam_burst_mean = st.number_input(
        "Spam burst mean (extra trades)", min_value=0.0,
        value=float(engine.cfg.spam_burst_mean), step=0.5,
    )
    if st.button("Add 1 pool"):
        engine.add_pool()


net_df = engine.metrics.network_df()
pool_df = engine.metrics.pool_df()

tab_network, tab_pools, tab_traders, tab_fees, tab_events, tab_admin = st.tabs(
    ["Network", "Pools", "Traders", "Fee Schedule", "Events", "Engine Config"]
)

with tab_network:
    st.subheader("Network KPIs")
    if net_df.empty:
        st.info("No metrics yet. Run ticks.")
    else:
        latest = net_df.iloc[-1].to_dict()
        kpis = [
            ("Pools", _fmt(latest["num_pools"])),
            ("Traders", _fmt(latest["num_traders"])),
            ("Swaps (tick)", _fmt(latest["swaps_tick"])),
            ("Fees USD (tick)", _fmt(latest["fees_usd_tick"])),
            ("Max surge level", str(int(latest["max_surge_level"]))),
            ("Mean fee casual", _fmt_ppm(latest["fee_ppm_mean_casual"])),
            ("Mean fee spam", _fmt_ppm(latest["fee_ppm_mean_spam"])),
            ("Spam events (tick)", _fmt(latest["spam_events_tick"])),
        ]
        _render_kpi_grid(kpis, columns=4)

        st.subheader("Mean fee by population (ppm)")
        st.line_chart(engine.metrics.fee_distribution())

        st.subheader("Swaps per tick")
        st.line_chart(net_df, x="tick", y=["swaps_tick", "failed_swaps_tick"])

        st.subheader("Fees collected (USD per tick)")
        st.line_chart(net_df, x="tick", y=["fees_usd_tick"])

with tab_pools:
    st.subheader("Pool windows")
    if pool_df.empty:
        st.info("No pool snapshots yet.")
    else:
        latest_tick = int(pool_df["tick"].max())
        st.dataframe(pool_df[pool_df["tick"] == latest_tick], use_container_width=True)
        st.subheader("Surge level over time")
        pivot = pool_df.pivot_table(index="tick", columns="pool_id", values="surge_level", aggfunc="last")
        st.line_chart(pivot)

with tab_traders:
    st.subheader("Trader windows")
    tdf = engine.trader_stats_df()
    if tdf.empty:
        st.info("No trader activity yet.")
    else:
        kind = st.selectbox("Population", ["all", "casual", "spam"])
        if kind != "all":
            tdf = tdf[tdf["kind"] == kind]
        st.dataframe(tdf.sort_values("lifetime_count", ascending=False), use_container_width=True)

with tab_fees:
    st.subheader("Base rate and multiplier by window count")
    curve = _fee_curve(engine)
    c1, c2 = st.columns(2)
    c1.line_chart(curve, x="window_count", y=["base_rate_ppm"])
    c2.line_chart(curve, x="window_count", y=["multiplier"])
    st.caption(f"Fee cap: {_fmt_ppm(engine.fee_engine.cfg.max_fee)}")

with tab_events:
    st.subheader("Recent events")
    types = ["all", "SURGE_LEVEL", "SPAM_DETECTED", "FEE_APPLIED", "SWAP_EXECUTED", "SWAP_FAILED",
             "POOL_INITIALIZED", "CONFIG_UPDATED"]
    event_type = st.selectbox("Event type", types)
    tail = engine.log.tail(300) if event_type == "all" else engine.log.of_type(event_type)[-300:]
    if not tail:
        st.info("No events yet.")
    else:
        df = pd.DataFrame([e.__dict__ for e in tail])
        df["_order"] = range(len(df))
        df = df.sort_values(["timestamp", "_order"], ascending=False).drop(columns="_order")
        if "meta" in df.columns:
            df["meta"] = df["meta"].apply(_format_event_meta)
        st.dataframe(df, use_container_width=True)

with tab_admin:
    st.subheader("Windows")
    caller = st.text_input("Caller", value=engine.fee_engine.owner)
    fe_cfg = engine.fee_engine.cfg
    global_window = st.number_input("Pool window (s)", min_value=1, value=int(fe_cfg.global_window_seconds), step=60)
    user_window = st.number_input("Trader window (s)", min_value=1, value=int(fe_cfg.user_window_seconds), step=30)
    max_fee = st.number_input("Fee cap (ppm)", min_value=0, value=int(fe_cfg.max_fee), step=10_000)
    if st.button("Apply"):
        try:
            engine.fee_engine.update_config(
                caller,
                global_window_seconds=int(global_window),
                user_window_seconds=int(user_window),
                max_fee=int(max_fee),
            )
            st.success("Engine config updated.")
        except CallerNotAuthorized as exc:
            st.warning(str(exc))
        except InvalidConfig as exc:
            st.warning(f"Invalid config: {exc}")
