"""
Activity and Notification Service.

Provides a clean interface for recording the side-effect rows every mutation
produces. Rows are added to the caller's session and are committed together
with the mutation that produced them; nothing here commits on its own.

Usage:
    activity = ActivityService(db)
    activity.record(ActivityType.TASK_CREATED, organization_id=org.id,
                    actor_id=user.id, project_id=project.id, task_id=task.id)
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..primitives import ActivityType, generate_id, utc_now
from .models import ActivityModel, NotificationModel


class ActivityService:
    """Service for appending and reading activity rows."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        activity_type: ActivityType,
        organization_id: str,
        actor_id: str,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ActivityModel:
        """Stage one activity row in the current transaction.

        Args:
            activity_type: What happened
            organization_id: Tenant the mutation belongs to
            actor_id: User who performed the mutation
            project_id: Project touched, if any
            task_id: Task touched, if any
            meta: JSON-serializable details (changed fields, titles, ids)

        Returns:
            The pending ActivityModel
        """
        entry = ActivityModel(
            id=generate_id(),
            type=activity_type,
            organization_id=organization_id,
            actor_id=actor_id,
            project_id=project_id,
            task_id=task_id,
            meta=meta or {},
            created_at=utc_now(),
        )
        self.db.add(entry)
        return entry

    def list(
        self,
        organization_id: str,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        activity_type: Optional[ActivityType] = None,
        limit: int = 50,
    ) -> List[ActivityModel]:
        """Newest-first activity for an organization, optionally narrowed."""
        stmt = select(ActivityModel).where(
            ActivityModel.organization_id == organization_id
        )
        if project_id:
            stmt = stmt.where(ActivityModel.project_id == project_id)
        if task_id:
            stmt = stmt.where(ActivityModel.task_id == task_id)
        if activity_type:
            stmt = stmt.where(ActivityModel.type == activity_type)

        stmt = stmt.order_by(desc(ActivityModel.created_at), desc(ActivityModel.id))
        return list(self.db.scalars(stmt.limit(limit)))


class NotificationService:
    """Service for per-user notifications."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, user_id: str, title: str, body: str = "") -> NotificationModel:
        """Stage a notification in the current transaction."""
        notification = NotificationModel(
            id=generate_id(),
            user_id=user_id,
            title=title,
            body=body,
            read=False,
            created_at=utc_now(),
        )
        self.db.add(notification)
        return notification

    def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> List[NotificationModel]:
        stmt = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.read.is_(False))
        stmt = stmt.order_by(desc(NotificationModel.created_at), desc(NotificationModel.id))
        return list(self.db.scalars(stmt.limit(limit)))
