"""
flow_core - dual-mode storage core for FlowTracker.

Tasks, pomodoro sessions, settings, achievements and streak counters are
served from Supabase when it is reachable and from a local SQLite cache when
it is not. See flow_core.offline for the public API.
"""

__version__ = "0.1.0"
