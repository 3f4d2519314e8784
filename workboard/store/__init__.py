"""
Work-item store for Workboard.

Owns the entity graph Organization -> Project -> Epic -> Task -> Subtask
and everything attached to tasks. Every mutation:

1. resolves the caller's membership and checks the permission table
2. validates structural rules against stored state
3. commits the change and exactly one Activity row together
4. publishes the resulting domain events after commit

Usage:
    store = WorkItemStore(db, publisher)
    project = store.projects.create_project(caller, org_id, ProjectCreate(...))
    task = store.tasks.create_task(caller, project.id, TaskCreate(title="Ship"))
"""

from typing import Optional

from sqlalchemy.orm import Session

from ..db.activity_service import ActivityService
from ..realtime import EventPublisher, NullPublisher
from .collaboration import CommentService, FileService, InboxService, TimeEntryService
from .organizations import OrganizationService
from .projects import ProjectService
from .tasks import TaskService


class WorkItemStore:
    """Bundle of the store services sharing one session and one publisher."""

    def __init__(self, db: Session, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher or NullPublisher()
        activity = ActivityService(db)

        self.organizations = OrganizationService(db, self.publisher, activity)
        self.projects = ProjectService(db, self.publisher, activity)
        self.tasks = TaskService(db, self.publisher, activity)
        self.comments = CommentService(db, self.publisher, activity)
        self.time_entries = TimeEntryService(db, self.publisher, activity)
        self.files = FileService(db, self.publisher, activity)
        self.inbox = InboxService(db, self.publisher, activity)


__all__ = [
    "CommentService",
    "FileService",
    "InboxService",
    "OrganizationService",
    "ProjectService",
    "TaskService",
    "TimeEntryService",
    "WorkItemStore",
]
