"""
FlowTracker storage console.

Run with:
    streamlit run app.py

Shows which backend is serving reads and writes, lets an operator retry the
cloud connection and migrate the local cache once Supabase is reachable.
"""

from __future__ import annotations
import streamlit as st

from flow_core.logging import setup_logging
from flow_core.offline import EntityType
from flow_core.ui.storage_status import (
    get_cached_storage_context,
    render_migration_panel,
    render_storage_indicator,
)

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="FlowTracker - Storage",
    page_icon="⏱️",
    layout="wide",
)

ctx = get_cached_storage_context()
setup_logging(level=ctx.config.log_level, debug_storage=ctx.config.debug_storage)

st.title("⏱️ FlowTracker storage")

# ============================================================================
# STATUS
# ============================================================================
with st.sidebar:
    render_storage_indicator(ctx, show_details=False)

render_storage_indicator(ctx)

# ============================================================================
# LOCAL CACHE
# ============================================================================
st.subheader("Local cache")
entity = st.selectbox(
    "Entity type",
    [e.value for e in EntityType],
    key="storage_entity_type",
)
df = ctx.local_store.to_dataframe(EntityType.parse(entity))
if df.empty:
    st.info("No cached records of this type.")
else:
    st.dataframe(df, use_container_width=True, hide_index=True)

# ============================================================================
# MIGRATION
# ============================================================================
render_migration_panel(ctx, show_in_expander=False)
