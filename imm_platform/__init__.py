"""IMM Cloud Calculator — Python/Streamlit firm metamorphosis (N, M) analysis."""
from .types import *
from .formatting import *
from .engine import (
    group_by_firm,
    firm_names,
    has_valid_data,
    compute_metrics,
    run_metrics,
    rank_firms,
    search_firms,
    resolve_view_state,
)
