# =============================================================================
# flow_core/data/__init__.py
# Remote data access (Supabase)
# =============================================================================

from .supabase_client import (
    RemoteStoreClient,
    classify_exception,
    create_supabase_client,
)

__all__ = ["RemoteStoreClient", "classify_exception", "create_supabase_client"]
