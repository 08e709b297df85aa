# success_core/services/__init__.py
"""
Service layer: the DashboardService composition root and shared result types.
"""
from .base_service import BaseService, ServiceResult
from .dashboard_service import DashboardService, DataKeys, create_dashboard

__all__ = [
    "BaseService",
    "ServiceResult",
    "DashboardService",
    "DataKeys",
    "create_dashboard",
]
