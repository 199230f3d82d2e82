"""
app.py
======
IMM Cloud Calculator — Main Streamlit Application
Firm metamorphosis analysis (N, M) over the 2017–2021 window

Layout:
  Sidebar   – dataset upload, sample data, reset
  Left      – firm search, Top 50 by market value (analyzable firms)
  Main      – N vs M scatter, metric table, CSV export
  Footer    – how it works
"""

import logging
from typing import List, Optional

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from imm_platform.types import (
    ANALYSIS_YEARS, Companies, FinancialRecord, IngestOptions, MetricPoint, RankEntry,
)
from imm_platform.parser import parse_file, expand_uploaded_files, merge_records
from imm_platform.engine import (
    group_by_firm, firm_names, rank_firms, run_metrics, search_firms,
    resolve_view_state,
)
from imm_platform.formatting import (
    format_market_value, format_duration_ms, format_metric, year_pair_label,
    get_quadrant_color,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger("imm_app")

# ─── Page Configuration ───────────────────────────────────────────────────────

st.set_page_config(
    page_title="IMM Cloud Calculator",
    page_icon="📈",
    layout="wide",
    initial_sidebar_state="expanded",
    menu_items={
        "About": "IMM — Financial Cloud Calculator (firm metamorphosis N/M analysis)",
    },
)

# ─── Custom CSS ───────────────────────────────────────────────────────────────

st.markdown("""
<style>
    .main-header {
        background: linear-gradient(135deg, #7c3aed 0%, #db2777 60%, #ef4444 100%);
        border-radius: 12px;
        padding: 1.2rem 1.5rem;
        color: white;
        margin-bottom: 1.5rem;
        box-shadow: 0 4px 20px rgba(124,58,237,0.3);
        display: flex; justify-content: space-between; align-items: center;
    }
    .main-header h1 { margin: 0; font-size: 1.8rem; font-weight: 800; letter-spacing: -0.02em; }
    .main-header p  { margin: 0.25rem 0 0; font-size: 0.85rem; opacity: 0.85; }
    .exec-pill {
        background: rgba(0,0,0,0.25); border-radius: 999px; padding: 0.35rem 0.9rem;
        font-family: monospace; font-size: 0.85rem; color: #bbf7d0;
    }
    .empty-state {
        border: 2px dashed #e2e8f0; border-radius: 18px; padding: 3rem;
        text-align: center; color: #94a3b8; font-size: 0.95rem;
    }
    .firm-count { font-size: 0.72rem; color: #94a3b8; margin-top: 0.5rem; }
    div.stButton > button { border-radius: 8px; font-weight: 500; }
</style>
""", unsafe_allow_html=True)


# ─── Helpers ─────────────────────────────────────────────────────────────────

EMPTY_STATE_MESSAGES = {
    "no_data": "Please load a dataset to begin.",
    "no_selection": "Select a firm to view metamorphosis analysis.",
    "insufficient_data": "Insufficient data for this firm (requires consecutive years).",
}


@st.cache_data(show_spinner=False)
def _grouped(records: List[FinancialRecord]) -> Companies:
    return group_by_firm(records)


@st.cache_data(show_spinner=False)
def _catalog(records: List[FinancialRecord]) -> List[str]:
    return firm_names(_grouped(records))


@st.cache_data(show_spinner=False)
def _top_firms(records: List[FinancialRecord]) -> List[RankEntry]:
    return rank_firms(_grouped(records))


def _build_scatter(points: List[MetricPoint], firm: str) -> go.Figure:
    fig = go.Figure(go.Scatter(
        x=[p.n for p in points],
        y=[p.m for p in points],
        mode="lines+markers+text",
        text=[p.label for p in points],
        textposition="top center",
        line=dict(color="#a78bfa", width=2, dash="dot"),
        marker=dict(size=12, color=[get_quadrant_color(p.n, p.m) for p in points],
                    line=dict(width=1, color="white")),
        hovertemplate="%{text}<br>N = %{x:.4f}<br>M = %{y:.4f}<extra></extra>",
        name=firm,
    ))
    fig.add_hline(y=0, line_dash="dash", line_color="#94a3b8")
    fig.update_layout(
        title=dict(text=f"Metamorphosis — {firm}", font=dict(size=15, color="#1e293b")),
        xaxis_title="N (Δ profitability rate)",
        yaxis_title="M (market value elasticity)",
        paper_bgcolor="white", plot_bgcolor="#f8fafc",
        margin=dict(l=50, r=20, t=50, b=40),
        height=420, showlegend=False,
        font=dict(family="sans-serif", size=11, color="#64748b"),
        xaxis=dict(gridcolor="#e2e8f0", zerolinecolor="#cbd5e1"),
        yaxis=dict(gridcolor="#e2e8f0", zerolinecolor="#cbd5e1"),
    )
    return fig


def _metric_table(points: List[MetricPoint]) -> pd.DataFrame:
    rows = [{
        "Years": year_pair_label(p.year_prev, p.year_curr),
        "N": format_metric(p.n),
        "M": format_metric(p.m),
    } for p in points]
    return pd.DataFrame(rows)


def _metric_csv(points: List[MetricPoint]) -> bytes:
    df = pd.DataFrame([{"years": p.label, "n": p.n, "m": p.m} for p in points])
    return df.to_csv(index=False).encode("utf-8")


# ─── Session State ────────────────────────────────────────────────────────────

def _init_state() -> None:
    defaults = {
        "records": [],
        "dataset_name": "",
        "selected_firm": "",
        "search_query": "",
        "execution_ms": None,
        "strict_mode": False,
    }
    for k, v in defaults.items():
        if k not in st.session_state:
            st.session_state[k] = v


def _select_firm(name: str) -> None:
    st.session_state["selected_firm"] = name
    st.session_state["search_query"] = name


def _on_search_change() -> None:
    if st.session_state["search_query"] == "":
        st.session_state["selected_firm"] = ""


def _load_records(records: List[FinancialRecord], dataset_name: str) -> None:
    st.session_state.update({
        "records": records,
        "dataset_name": dataset_name,
        "selected_firm": "",
        "search_query": "",
        "execution_ms": None,
    })


_init_state()


# ─── Sample Data Generator ───────────────────────────────────────────────────

def _generate_sample_data() -> List[FinancialRecord]:
    """Deterministic sample panel: 60 firms, some with gaps, some outside the window."""
    records: List[FinancialRecord] = []
    for i in range(60):
        name = f"Firm {chr(65 + i % 26)}{i // 26 + 1:02d}"
        base_sales = 1_000 + 137 * i
        base_mv = 5_000 + 911 * ((i * 7) % 60)
        years = list(range(2016, 2023))
        if i % 9 == 0:
            years = [2017, 2019, 2021]  # no adjacent coverage
        for k, y in enumerate(years):
            sales = base_sales * (1 + 0.05 * k)
            margin = 0.04 + 0.01 * ((i + k * 3) % 7) - 0.015 * (k % 2)
            mv = base_mv * (1 + 0.08 * k + 0.03 * ((i + k) % 5))
            records.append(FinancialRecord(
                name=name, year=y, profit=round(sales * margin, 2),
                sales=round(sales, 2), market_value=round(mv, 2),
            ))
    return records


# ─── Sidebar ──────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown("### 📁 Dataset")
    st.caption("Columns: name, year, profit, sales, market_value (aliases accepted)")

    uploaded_files = st.file_uploader(
        "Upload firm-year data",
        accept_multiple_files=True,
        type=["xlsx", "xls", "csv", "html", "htm", "zip"],
        label_visibility="collapsed",
    )

    st.session_state["strict_mode"] = st.checkbox(
        "Strict mode (reject files with malformed rows)",
        value=st.session_state["strict_mode"],
    )
    ingest_options = IngestOptions(strict_mode=st.session_state["strict_mode"])

    if uploaded_files:
        batches = []
        names = []
        with st.spinner("Parsing files..."):
            for f in uploaded_files:
                try:
                    for inner_name, inner_bytes in expand_uploaded_files(f.read(), f.name):
                        recs, report = parse_file(inner_bytes, inner_name, ingest_options)
                        display_name = inner_name if inner_name == f.name else f"{f.name} → {inner_name}"
                        for err in report.errors[:5]:
                            st.error(f"❌ {err}")
                        if report.warnings:
                            st.warning(f"⚠️ {display_name}: {len(report.warnings)} rows skipped")
                        if recs and report.valid:
                            batches.append(recs)
                            names.append(display_name)
                            st.success(f"✅ {display_name}: {len(recs)} rows, {report.stats.get('firms', 0)} firms")
                except Exception as e:
                    logger.exception("Upload failed: %s", f.name)
                    st.error(f"❌ {f.name}: {e}")

        if batches and st.button("▶ Load Dataset", type="primary", width='stretch'):
            _load_records(merge_records(batches), ", ".join(names))
            st.rerun()

    if st.button("Load Sample Data", width='stretch'):
        _load_records(_generate_sample_data(), "Sample panel")
        st.rerun()

    if st.session_state["records"]:
        st.markdown("---")
        st.caption(f"Loaded: {st.session_state['dataset_name']}")
        if st.button("🔄 Clear Dataset", width='stretch'):
            _load_records([], "")
            st.rerun()


# ─── Computation ──────────────────────────────────────────────────────────────

records: List[FinancialRecord] = st.session_state["records"]
companies = _grouped(records)
catalog = _catalog(records)
top_firms = _top_firms(records)

selected: Optional[str] = st.session_state["selected_firm"] or None
run = run_metrics(companies, selected)
if run.elapsed_ms is not None:
    st.session_state["execution_ms"] = run.elapsed_ms


# ─── Main Header ─────────────────────────────────────────────────────────────

exec_ms = st.session_state["execution_ms"]
exec_html = f"<span class='exec-pill'>⏱ {format_duration_ms(exec_ms)}</span>" if exec_ms is not None else ""
st.markdown(f"""
<div class='main-header'>
    <div><h1>IMM <span style='opacity:0.5; font-weight:300; font-size:1.2rem;'>Cloud Calculator</span></h1>
    <p>Financial Cloud Calculator</p></div>
    {exec_html}
</div>
""", unsafe_allow_html=True)


col_side, col_main = st.columns([4, 8])

with col_side:
    if records:
        st.markdown("**Select Firm**")
        st.text_input(
            "Search firm",
            key="search_query",
            placeholder="Search firm...",
            on_change=_on_search_change,
            label_visibility="collapsed",
        )
        query = st.session_state["search_query"]
        if query and query != st.session_state["selected_firm"]:
            for firm in search_firms(catalog, query):
                st.button(firm, key=f"search_{firm}", on_click=_select_firm, args=(firm,), width='stretch')
        st.markdown(f"<div class='firm-count'>{len(companies)} firms loaded</div>", unsafe_allow_html=True)

        st.markdown("#### Top 50 by Market Value (Analyzable)")
        with st.container(height=600):
            for idx, entry in enumerate(top_firms, start=1):
                marker = "▶ " if entry.name == st.session_state["selected_firm"] else ""
                st.button(
                    f"{marker}#{idx}  {entry.name}  ·  {format_market_value(entry.market_value)}",
                    key=f"top_{entry.name}",
                    on_click=_select_firm, args=(entry.name,),
                    help=f"Latest year: {entry.latest_year}",
                    width='stretch',
                )

with col_main:
    state = resolve_view_state(len(records), selected, run.points)
    if state is None:
        st.plotly_chart(_build_scatter(run.points, run.firm), width='stretch')
        st.dataframe(_metric_table(run.points), hide_index=True, width='stretch')
        st.download_button(
            "⬇ Download metrics (CSV)",
            data=_metric_csv(run.points),
            file_name=f"{run.firm}_metamorphosis.csv",
            mime="text/csv",
        )
    else:
        st.markdown(f"<div class='empty-state'>{EMPTY_STATE_MESSAGES[state]}</div>", unsafe_allow_html=True)


# ─── How it works ────────────────────────────────────────────────────────────

st.markdown("---")
st.markdown("### How it works & What it shows")
doc_left, doc_right = st.columns(2)
with doc_left:
    st.markdown(f"""
**How to use**
- Select a firm from the **Top 50** list on the left or use the **Search** bar.
- The system automatically analyzes financial data for consecutive years ({ANALYSIS_YEARS[0]}-{ANALYSIS_YEARS[-1]}).
- Firms without consecutive data are excluded from the Top 50 list.
""")
with doc_right:
    st.markdown("""
**The chart plots the relationship between two key derived metrics:**
- **Axis X (N)**: Change in profitability (Rentability) between years.
- **Axis Y (M)**: Market value elasticity relative to profitability changes.

The horizontal line represents a synchronous change in stock prices relative to the growth of the
firm's profit rate. A significant increase in stock prices relative to profit rate growth indicates an
accumulation of unsecured liabilities, signaling the inflation of an economic bubble with a risk of default.
""")
