# =============================================================================
# flow_core/services/__init__.py
# Service Layer for FlowTracker
# =============================================================================
"""
Service base classes shared by long-running storage operations.

Usage Example:
-------------
    from flow_core.services import BaseService, ServiceResult

    class BackupService(BaseService):
        def run(self) -> ServiceResult:
            return self.safe_execute("Backing up local cache", ctx.backup)
"""

from .base_service import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
]
