# =============================================================================
# flow_core/offline/__init__.py
# Dual-Mode Storage Core for FlowTracker
# =============================================================================
"""
Dual-Mode Storage Module

This module keeps FlowTracker working whether the Supabase backend is
reachable or not. Every read and write goes to the remote store when it is
usable and to the local SQLite cache when it is not.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                     DUAL-MODE STORAGE CORE                       │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │            StorageContext / EntityAPI                     │  │
│   │         (Single API - Apps use this only)                 │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│              ┌─────────────┴─────────────┐                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │ OperationRouter  │───────►│   ModeManager    │             │
│   │    (Fallback)    │ report │ (remote/local/   │             │
│   └──────────────────┘        │     hybrid)      │             │
│              │                └──────────────────┘             │
│   ┌──────────┴──────────┐              ▲                        │
│   ▼                     ▼              │                        │
│ ┌────────┐        ┌──────────┐  ┌──────────────┐               │
│ │Supabase│◄───────│  SQLite  │  │ Prober /     │               │
│ │(Remote)│Migrate │ (Local)  │  │ Connectivity │               │
│ └────────┘        └──────────┘  └──────────────┘               │
│              ▲                                                   │
│   ┌──────────────────┐                                          │
│   │ MigrationEngine  │                                          │
│   │ (on reconnect)   │                                          │
│   └──────────────────┘                                          │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from flow_core.offline import get_storage_context, EntityType, Record

ctx = get_storage_context()
tasks = ctx.entity(EntityType.TASK)
tasks.write(Record(EntityType.TASK, "t-1", {"title": "Plan sprint"}))

print(ctx.current_mode)              # StorageMode.REMOTE / LOCAL / HYBRID
print(ctx.get_status()["router"])    # executed / fallbacks / failures
"""

from flow_core.offline.models import (
    EntityType,
    StorageMode,
    Record,
    AvailabilityStatus,
    StorageProvider,
    StorageStatus,
    MigrationError,
    MigrationProgress,
    MigrationJob,
    MigrationSummary,
    EntityMigrationResult,
    ValidationReport,
)

from flow_core.offline.config import (
    StorageConfig,
    load_config,
    get_config_status,
)

from flow_core.offline.local_database import LocalCacheStore

from flow_core.offline.connection_manager import (
    AvailabilityProber,
    ConnectivityMonitor,
)

from flow_core.offline.mode_manager import ModeManager

from flow_core.offline.operation_router import OperationRouter

from flow_core.offline.migration_engine import MigrationEngine

from flow_core.offline.unified_data_service import (
    EntityAPI,
    StorageContext,
    get_storage_context,
    reset_storage_context,
)

__all__ = [
    # Types
    "EntityType",
    "StorageMode",
    "Record",
    "AvailabilityStatus",
    "StorageProvider",
    "StorageStatus",
    "MigrationError",
    "MigrationProgress",
    "MigrationJob",
    "MigrationSummary",
    "EntityMigrationResult",
    "ValidationReport",
    # Configuration
    "StorageConfig",
    "load_config",
    "get_config_status",
    # Backends
    "LocalCacheStore",
    # Availability
    "AvailabilityProber",
    "ConnectivityMonitor",
    # Mode & routing
    "ModeManager",
    "OperationRouter",
    # Migration
    "MigrationEngine",
    # Context (Main API)
    "EntityAPI",
    "StorageContext",
    "get_storage_context",
    "reset_storage_context",
]
