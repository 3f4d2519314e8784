"""
Workboard

Multi-tenant project and task tracking core: a work-item store under tenant
isolation, a role-based access engine, a task query engine and realtime
event fan-out.
"""

import importlib.metadata

__version__ = importlib.metadata.version("workboard")

from .errors import (
    AccessError,
    ConflictError,
    InputValidationError,
    NotFoundError,
    QueryTimeoutError,
    UnauthenticatedError,
    WorkboardError,
)
from .identity import Caller
from .policy import Action, Role, authorize
from .query import DashboardService, TaskQueryEngine
from .realtime import InMemoryBroker, RealtimePublisher
from .store import WorkItemStore

__all__ = [
    "AccessError",
    "Action",
    "Caller",
    "ConflictError",
    "DashboardService",
    "InMemoryBroker",
    "InputValidationError",
    "NotFoundError",
    "QueryTimeoutError",
    "RealtimePublisher",
    "Role",
    "TaskQueryEngine",
    "UnauthenticatedError",
    "WorkboardError",
    "WorkItemStore",
    "authorize",
]
