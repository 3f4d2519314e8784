"""
Read side of Workboard: task listings, dashboard metrics and activity feed.
"""

from .dashboard import DashboardService
from .tasks import TaskQueryEngine, apply_filters

__all__ = ["DashboardService", "TaskQueryEngine", "apply_filters"]
