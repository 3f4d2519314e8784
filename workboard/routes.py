"""
Workboard API Routes.

Thin request boundary: resolve the caller, call the store or query engine,
serialize the result. All endpoints are prefixed with /api. Typed errors
are turned into HTTP responses by the handler registered in ``api``.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import get_db
from .identity import Caller, load_caller, register_user
from .primitives import Priority, Status
from .query import DashboardService, TaskQueryEngine
from .realtime import EventPublisher, NullPublisher
from .schemas import (
    CommentCreate,
    EpicCreate,
    FileAttach,
    InviteAccept,
    InviteCreate,
    LabelCreate,
    OrganizationCreate,
    OrganizationUpdate,
    ProjectCreate,
    ProjectUpdate,
    RoleChange,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    TimeEntryCreate,
    TimerStart,
    TimerStop,
    UserCreate,
)
from .store import WorkItemStore

router = APIRouter(prefix="/api", tags=["workboard"])


# =============================================================================
# Dependencies
# =============================================================================


def get_publisher(request: Request) -> EventPublisher:
    return getattr(request.app.state, "publisher", None) or NullPublisher()


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Caller:
    """Identity comes from the authenticating proxy in front of the API."""
    return load_caller(db, x_user_id)


def get_store(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> WorkItemStore:
    return WorkItemStore(db, publisher)


# =============================================================================
# Users
# =============================================================================


@router.post("/users", status_code=201)
def create_user(data: UserCreate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Register a user the identity provider has already vouched for."""
    return register_user(db, data.email, data.name).to_dict()


@router.get("/me")
def get_me(caller: Caller = Depends(get_caller)) -> Dict[str, Any]:
    return {
        "user_id": caller.user_id,
        "memberships": {org_id: role.value for org_id, role in caller.memberships.items()},
    }


# =============================================================================
# Organizations
# =============================================================================


@router.post("/organizations", status_code=201)
def create_organization(
    data: OrganizationCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.create_organization(caller, data).to_dict()


@router.get("/organizations")
def list_organizations(
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [o.to_dict() for o in store.organizations.list_organizations(caller)]


@router.get("/organizations/{organization_id}")
def get_organization(
    organization_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.get_organization(caller, organization_id).to_dict()


@router.patch("/organizations/{organization_id}")
def update_organization(
    organization_id: str,
    data: OrganizationUpdate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.update_organization(caller, organization_id, data).to_dict()


@router.get("/organizations/{organization_id}/members")
def list_members(
    organization_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [m.to_dict() for m in store.organizations.list_members(caller, organization_id)]


@router.post("/organizations/{organization_id}/invites", status_code=201)
def invite_member(
    organization_id: str,
    data: InviteCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    invite = store.organizations.invite_member(caller, organization_id, data)
    return {**invite.to_dict(), "token": invite.token}


@router.post("/invites/accept")
def accept_invite(
    data: InviteAccept,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.accept_invite(caller, data.token).to_dict()


@router.patch("/organizations/{organization_id}/members/{user_id}")
def change_member_role(
    organization_id: str,
    user_id: str,
    data: RoleChange,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.change_member_role(
        caller, organization_id, user_id, data.role
    ).to_dict()


@router.delete("/organizations/{organization_id}/members/{user_id}")
def remove_member(
    organization_id: str,
    user_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, str]:
    store.organizations.remove_member(caller, organization_id, user_id)
    return {"status": "removed"}


@router.post("/organizations/{organization_id}/labels", status_code=201)
def create_label(
    organization_id: str,
    data: LabelCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.organizations.create_label(caller, organization_id, data).to_dict()


@router.get("/organizations/{organization_id}/labels")
def list_labels(
    organization_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [label.to_dict() for label in store.organizations.list_labels(caller, organization_id)]


@router.get("/organizations/{organization_id}/dashboard")
def dashboard_metrics(
    organization_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    project_ids: Optional[List[str]] = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    metrics = DashboardService(db).dashboard_metrics(
        caller, organization_id, start=start, end=end, project_ids=project_ids
    )
    return metrics.model_dump()


@router.get("/organizations/{organization_id}/activity")
def list_activity(
    organization_id: str,
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    activity = DashboardService(db).list_activity(
        caller, organization_id, project_id=project_id, task_id=task_id, limit=limit
    )
    return [a.to_dict() for a in activity]


# =============================================================================
# Projects
# =============================================================================


@router.post("/organizations/{organization_id}/projects", status_code=201)
def create_project(
    organization_id: str,
    data: ProjectCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.projects.create_project(caller, organization_id, data).to_dict()


@router.get("/organizations/{organization_id}/projects")
def list_projects(
    organization_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [p.to_dict() for p in store.projects.list_projects(caller, organization_id)]


@router.get("/projects/{project_id}")
def get_project(
    project_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.projects.get_project(caller, project_id).to_dict()


@router.patch("/projects/{project_id}")
def update_project(
    project_id: str,
    data: ProjectUpdate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.projects.update_project(caller, project_id, data).to_dict()


@router.post("/projects/{project_id}/epics", status_code=201)
def create_epic(
    project_id: str,
    data: EpicCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.projects.create_epic(caller, project_id, data).to_dict()


@router.get("/projects/{project_id}/epics")
def list_epics(
    project_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in store.projects.list_epics(caller, project_id)]


# =============================================================================
# Tasks
# =============================================================================


@router.post("/projects/{project_id}/tasks", status_code=201)
def create_task(
    project_id: str,
    data: TaskCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.tasks.create_task(caller, project_id, data).to_dict()


@router.get("/projects/{project_id}/tasks")
def query_tasks(
    project_id: str,
    status: Optional[List[Status]] = Query(None),
    priority: Optional[List[Priority]] = Query(None),
    assignee_ids: Optional[List[str]] = Query(None),
    label_ids: Optional[List[str]] = Query(None),
    epic_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List a project's tasks; out-of-range page or limit is a 422."""
    settings = get_settings()
    filters = TaskFilters(
        status=status,
        priority=priority,
        assignee_ids=assignee_ids,
        label_ids=label_ids,
        epic_id=epic_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    result = TaskQueryEngine(db).query_tasks(
        caller,
        project_id,
        filters,
        page=page,
        limit=limit if limit is not None else settings.default_page_limit,
        timeout=settings.query_timeout_seconds,
    )
    return result.model_dump()


@router.get("/tasks/{task_id}")
def get_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.tasks.get_task(caller, task_id).to_dict()


@router.patch("/tasks/{task_id}")
def update_task(
    task_id: str,
    data: TaskUpdate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.tasks.update_task(caller, task_id, data).to_dict()


@router.delete("/tasks/{task_id}")
def delete_task(
    task_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    deleted = store.tasks.delete_task(caller, task_id)
    return {"status": "deleted", "deleted_task_ids": deleted}


# =============================================================================
# Comments, time, files
# =============================================================================


@router.post("/tasks/{task_id}/comments", status_code=201)
def add_comment(
    task_id: str,
    data: CommentCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.comments.add_comment(caller, task_id, data).to_dict()


@router.get("/tasks/{task_id}/comments")
def list_comments(
    task_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in store.comments.list_comments(caller, task_id)]


@router.patch("/comments/{comment_id}")
def update_comment(
    comment_id: str,
    data: CommentCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.comments.update_comment(caller, comment_id, data).to_dict()


@router.delete("/comments/{comment_id}")
def delete_comment(
    comment_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, str]:
    store.comments.delete_comment(caller, comment_id)
    return {"status": "deleted"}


@router.post("/tasks/{task_id}/time-entries", status_code=201)
def record_time_entry(
    task_id: str,
    data: TimeEntryCreate,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.time_entries.record_time_entry(caller, task_id, data).to_dict()


@router.get("/tasks/{task_id}/time-entries")
def list_time_entries(
    task_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in store.time_entries.list_time_entries(caller, task_id)]


@router.post("/tasks/{task_id}/timer/start", status_code=201)
def start_timer(
    task_id: str,
    data: TimerStart,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    entry = store.time_entries.start_timer(
        caller, task_id, billable=data.billable, rate_cents=data.rate_cents
    )
    return entry.to_dict()


@router.post("/tasks/{task_id}/timer/stop")
def stop_timer(
    task_id: str,
    data: TimerStop,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.time_entries.stop_timer(caller, task_id, ended_at=data.ended_at).to_dict()


@router.post("/tasks/{task_id}/files", status_code=201)
def attach_file(
    task_id: str,
    data: FileAttach,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.files.attach_file(caller, task_id, data).to_dict()


@router.get("/tasks/{task_id}/files")
def list_files(
    task_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return [f.to_dict() for f in store.files.list_files(caller, task_id)]


# =============================================================================
# Notifications
# =============================================================================


@router.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    notifications = store.inbox.list_notifications(caller, unread_only=unread_only, limit=limit)
    return [n.to_dict() for n in notifications]


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    caller: Caller = Depends(get_caller),
    store: WorkItemStore = Depends(get_store),
) -> Dict[str, Any]:
    return store.inbox.mark_notification_read(caller, notification_id).to_dict()
