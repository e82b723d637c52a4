# =============================================================================
# flow_core/ui/storage_status.py
# Storage Status Indicator and Migration Panel
# Operator surfaces for the dual-mode storage core
# =============================================================================

import streamlit as st
import pandas as pd
from datetime import datetime
from typing import Optional

from flow_core.offline import (
    EntityType,
    MigrationProgress,
    StorageContext,
    StorageMode,
    get_storage_context,
)
from flow_core.errors import ErrorContext


MODE_BADGES = {
    StorageMode.REMOTE.value: ("☁️", "Cloud sync", "success"),
    StorageMode.HYBRID.value: ("🔀", "Hybrid (cloud with local fallback)", "info"),
    StorageMode.LOCAL.value: ("💾", "Local only", "warning"),
}

BACKUP_STATE_KEY = "storage_backup_json"


@st.cache_resource(show_spinner=False)
def get_cached_storage_context() -> StorageContext:
    """One StorageContext per Streamlit server process."""
    ctx = get_storage_context()
    ctx.start_monitoring()
    return ctx


def _format_time(value: Optional[str]) -> str:
    if not value:
        return "never"
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value


def render_storage_indicator(ctx: Optional[StorageContext] = None, show_details: bool = True) -> None:
    """
    Render the current storage mode and backend health.

    Local mode is shown persistently as a warning; it is not an error.

    Args:
        ctx: StorageContext (defaults to the cached process-wide one)
        show_details: Whether to include the diagnostics expander
    """
    ctx = ctx or get_cached_storage_context()
    status = ctx.get_status()
    icon, label, level = MODE_BADGES[status["current_mode"]]

    message = f"{icon} Storage: **{label}**"
    if level == "success":
        st.success(message)
    elif level == "info":
        st.info(message)
    else:
        st.warning(message + " (changes will be uploaded when the cloud is reachable)")

    if not show_details:
        return

    with st.expander("Storage diagnostics", expanded=False):
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Online", "Yes" if status["is_online"] else "No")
        c2.metric("Remote failures", status["consecutive_failures"])
        c3.metric("Retries", status["retry_count"])
        c4.metric("Fallbacks", status["router"]["fallbacks"])

        st.caption(
            f"Last switch: {_format_time(status['last_switch'])} · "
            f"Last probe: {_format_time(status['last_probe'])}"
        )
        if status["last_probe_error"]:
            st.caption(f"Last probe error: {status['last_probe_error']}")

        providers = pd.DataFrame(status["available_providers"])
        if not providers.empty:
            st.dataframe(providers, use_container_width=True, hide_index=True)

        if not status["config"]["valid"]:
            for error in status["config"]["errors"]:
                st.error(error)

        col1, col2 = st.columns(2)
        with col1:
            if st.button(
                "🔄 Retry cloud connection",
                key="storage_retry",
                use_container_width=True,
                disabled=not status["remote_configured"],
            ):
                with st.spinner("Checking cloud connection..."):
                    with ErrorContext("Retrying cloud connection", show_user_message=True) as attempt:
                        mode = ctx.retry()
                if attempt.error is None:
                    if mode.prefers_remote:
                        st.success("✅ Connected to cloud storage")
                    else:
                        st.warning("Cloud storage is still unreachable")
                    st.rerun()
        with col2:
            if st.button("🔍 Re-detect mode", key="storage_redetect", use_container_width=True):
                with ErrorContext("Re-detecting storage mode", show_user_message=True) as attempt:
                    ctx.force_mode("auto")
                if attempt.error is None:
                    st.rerun()


def render_migration_panel(ctx: Optional[StorageContext] = None, show_in_expander: bool = True) -> None:
    """
    Render the migration trigger with live progress and per-record errors.

    Args:
        ctx: StorageContext (defaults to the cached process-wide one)
        show_in_expander: Whether to wrap in an expander (default: True)
    """
    ctx = ctx or get_cached_storage_context()

    def _render_panel():
        counts = {t.value: ctx.local_store.count(t) for t in EntityType}
        st.caption("Records in local cache: " + ", ".join(f"{k}: {v}" for k, v in counts.items()))

        if not ctx.is_remote:
            st.info("Cloud storage is not active; migration will run once it is reachable.")

        col1, col2, col3 = st.columns(3)
        with col1:
            migrate_clicked = st.button(
                "☁️ Migrate to cloud",
                key="storage_migrate",
                type="primary",
                use_container_width=True,
                disabled=ctx.migration.is_running or not ctx.is_remote,
            )
        with col2:
            validate_clicked = st.button(
                "✔️ Validate",
                key="storage_validate",
                use_container_width=True,
                disabled=ctx.migration.last_summary is None,
            )
        with col3:
            # Exporting the whole cache is only done on request
            backup_json = st.session_state.get(BACKUP_STATE_KEY)
            if backup_json is None and st.button(
                "📦 Prepare backup",
                key="storage_backup_prepare",
                use_container_width=True,
            ):
                backup_json = st.session_state[BACKUP_STATE_KEY] = ctx.backup()

            if backup_json is not None:
                st.download_button(
                    "📦 Download backup",
                    data=backup_json,
                    file_name=f"flowtracker-backup-{datetime.now():%Y%m%d-%H%M%S}.json",
                    mime="application/json",
                    key="storage_backup",
                    use_container_width=True,
                    on_click=lambda: st.session_state.pop(BACKUP_STATE_KEY, None),
                )

        if migrate_clicked:
            _run_migration(ctx)

        if validate_clicked:
            report = ctx.validate_migration()
            if report.is_valid:
                st.success("✅ Remote counts match the local cache")
            else:
                for issue in report.issues:
                    st.warning(issue)

        summary = ctx.migration.last_summary
        if summary is not None:
            _render_summary(summary)

    if show_in_expander:
        with st.expander("🔁 Local → Cloud migration", expanded=False):
            _render_panel()
    else:
        _render_panel()


def _run_migration(ctx: StorageContext) -> None:
    progress_bar = st.progress(0)
    status_text = st.empty()

    def on_progress(progress: MigrationProgress) -> None:
        progress_bar.progress(progress.percentage / 100)
        status_text.text(f"{progress.stage}: {progress.completed}/{progress.total}")

    ctx.migration.add_progress_listener(on_progress)
    try:
        result = ctx.migration.safe_execute("Migrating local cache", ctx.migrate)
    finally:
        ctx.migration.remove_progress_listener(on_progress)

    if not result:
        st.error(f"Migration failed [{result.error_code}]: {result.error}")
        return

    summary = result.data
    if summary.success:
        st.success(f"✅ Migrated {summary.migrated_records} records in {summary.time_taken:.1f}s")
    else:
        st.warning(
            f"Migrated {summary.migrated_records}/{summary.total_records} records, "
            f"{len(summary.errors)} failed"
        )


def _render_summary(summary) -> None:
    st.markdown("**Last migration**")
    per_entity = pd.DataFrame([
        {
            "entity": r.entity_type.value,
            "migrated": r.migrated_records,
            "total": r.total_records,
            "errors": len(r.errors),
            "seconds": round(r.time_taken, 2),
        }
        for r in summary.results
    ])
    st.dataframe(per_entity, use_container_width=True, hide_index=True)

    if summary.errors:
        st.dataframe(
            pd.DataFrame([e.to_dict() for e in summary.errors]),
            use_container_width=True,
            hide_index=True,
        )
