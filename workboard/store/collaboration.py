"""
Everything people hang off a task: comments, time entries, file metadata,
plus the per-user notification inbox.
"""

from datetime import datetime
from typing import List, Optional

import structlog

from ..db.models import CommentModel, FileModel, NotificationModel, TimeEntryModel
from ..errors import AccessError, ConflictError, InputValidationError, NotFoundError
from ..identity import Caller, ensure_authenticated
from ..policy import Action, authorize, require
from ..primitives import ActivityType, as_utc, generate_id, utc_now
from ..realtime import EventType, task_scope
from ..schemas import CommentCreate, FileAttach, TimeEntryCreate
from ._base import StoreService

logger = structlog.get_logger()

# Allowed drift between a closed entry's seconds and its interval
INTERVAL_TOLERANCE_SECONDS = 1


class CommentService(StoreService):
    """Service for task comments. Author and task never change."""

    def add_comment(self, caller: Caller, task_id: str, data: CommentCreate) -> CommentModel:
        """Any member of the task's organization may comment."""
        task, role = self._load_task(caller, task_id)
        require(role, Action.VIEW_TASK)

        now = utc_now()
        comment = CommentModel(
            id=generate_id(),
            task_id=task.id,
            author_id=caller.user_id,
            body=data.body,
            created_at=now,
            updated_at=now,
        )
        with self.transaction():
            self.db.add(comment)
            self.activity.record(
                ActivityType.COMMENT_ADDED,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"comment_id": comment.id},
            )

        self._publish(
            [(task_scope(task.id), EventType.COMMENT_CREATED, comment.to_dict())], caller
        )
        return comment

    def list_comments(self, caller: Caller, task_id: str) -> List[CommentModel]:
        task, role = self._load_task(caller, task_id)
        require(role, Action.VIEW_TASK)
        return (
            self.db.query(CommentModel)
            .filter(CommentModel.task_id == task.id)
            .order_by(CommentModel.created_at, CommentModel.id)
            .all()
        )

    def update_comment(
        self, caller: Caller, comment_id: str, data: CommentCreate
    ) -> CommentModel:
        """Only the author may edit a comment."""
        comment, _ = self._load_comment(caller, comment_id)
        if comment.author_id != caller.user_id:
            raise AccessError("Only the author can edit this comment")
        if comment.body == data.body:
            return comment

        task = comment.task
        with self.transaction():
            comment.body = data.body
            comment.updated_at = utc_now()
            self.activity.record(
                ActivityType.COMMENT_UPDATED,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"comment_id": comment.id},
            )

        self._publish(
            [(task_scope(task.id), EventType.COMMENT_UPDATED, comment.to_dict())], caller
        )
        return comment

    def delete_comment(self, caller: Caller, comment_id: str) -> None:
        """The author, or anyone allowed to delete tasks, may delete a comment."""
        comment, role = self._load_comment(caller, comment_id)
        if comment.author_id != caller.user_id and not authorize(role, Action.DELETE_TASK):
            raise AccessError("Only the author or a manager can delete this comment")

        task = comment.task
        payload = {"id": comment.id, "task_id": task.id}
        with self.transaction():
            self.db.delete(comment)
            self.activity.record(
                ActivityType.COMMENT_DELETED,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"comment_id": comment_id},
            )

        self.db.expire(task, ["comments"])
        self._publish([(task_scope(task.id), EventType.COMMENT_DELETED, payload)], caller)


class TimeEntryService(StoreService):
    """
    Service for time tracking.

    An entry is either closed (ended_at set, seconds matching the interval)
    or open (a running timer). A user has at most one open entry per task;
    the partial unique index on time_entries backs this under concurrency.
    """

    def record_time_entry(
        self, caller: Caller, task_id: str, data: TimeEntryCreate
    ) -> TimeEntryModel:
        task, role = self._load_task(caller, task_id)
        require(role, Action.CREATE_TASK)

        started_at = as_utc(data.started_at)
        ended_at = as_utc(data.ended_at)
        if ended_at is not None:
            if ended_at < started_at:
                raise InputValidationError("ended_at must not be before started_at")
            interval = (ended_at - started_at).total_seconds()
            if "seconds" in data.model_fields_set:
                seconds = data.seconds
                if abs(seconds - interval) > INTERVAL_TOLERANCE_SECONDS:
                    raise InputValidationError(
                        "seconds does not match the logged interval",
                        details={"seconds": seconds, "interval_seconds": int(interval)},
                    )
            else:
                seconds = int(round(interval))
        else:
            if data.seconds:
                raise InputValidationError("An open time entry cannot carry logged seconds")
            seconds = 0
            self._ensure_no_open_entry(caller.user_id, task.id)

        now = utc_now()
        entry = TimeEntryModel(
            id=generate_id(),
            task_id=task.id,
            user_id=caller.user_id,
            started_at=started_at,
            ended_at=ended_at,
            seconds=seconds,
            billable=data.billable,
            rate_cents=data.rate_cents,
            created_at=now,
            updated_at=now,
        )
        activity_type = (
            ActivityType.TIME_ENTRY_STARTED if ended_at is None else ActivityType.TIME_ENTRY_LOGGED
        )
        with self.transaction():
            self.db.add(entry)
            self.activity.record(
                activity_type,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"time_entry_id": entry.id, "seconds": seconds, "billable": entry.billable},
            )

        logger.info(
            "time_entry_recorded", time_entry_id=entry.id, task_id=task.id, open=entry.is_open
        )
        event_type = (
            EventType.TIME_ENTRY_STARTED if entry.is_open else EventType.TIME_ENTRY_STOPPED
        )
        self._publish([(task_scope(task.id), event_type, entry.to_dict())], caller)
        return entry

    def start_timer(
        self, caller: Caller, task_id: str, billable: bool = False, rate_cents: int = 0
    ) -> TimeEntryModel:
        """Open a running entry starting now."""
        return self.record_time_entry(
            caller,
            task_id,
            TimeEntryCreate(started_at=utc_now(), billable=billable, rate_cents=rate_cents),
        )

    def stop_timer(
        self, caller: Caller, task_id: str, ended_at: Optional[datetime] = None
    ) -> TimeEntryModel:
        """Close the caller's open entry on a task."""
        task, _ = self._load_task(caller, task_id)
        entry = self._open_entry(caller.user_id, task.id)
        if entry is None:
            raise NotFoundError("Open time entry", task.id)

        started_at = as_utc(entry.started_at)
        ended_at = as_utc(ended_at) or utc_now()
        if ended_at < started_at:
            raise InputValidationError("ended_at must not be before started_at")

        with self.transaction():
            entry.ended_at = ended_at
            entry.seconds = int((ended_at - started_at).total_seconds())
            self.activity.record(
                ActivityType.TIME_ENTRY_STOPPED,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"time_entry_id": entry.id, "seconds": entry.seconds},
            )

        self._publish(
            [(task_scope(task.id), EventType.TIME_ENTRY_STOPPED, entry.to_dict())], caller
        )
        return entry

    def list_time_entries(self, caller: Caller, task_id: str) -> List[TimeEntryModel]:
        task, role = self._load_task(caller, task_id)
        require(role, Action.VIEW_TASK)
        return (
            self.db.query(TimeEntryModel)
            .filter(TimeEntryModel.task_id == task.id)
            .order_by(TimeEntryModel.started_at, TimeEntryModel.id)
            .all()
        )

    def _open_entry(self, user_id: str, task_id: str) -> Optional[TimeEntryModel]:
        return (
            self.db.query(TimeEntryModel)
            .filter(
                TimeEntryModel.user_id == user_id,
                TimeEntryModel.task_id == task_id,
                TimeEntryModel.ended_at.is_(None),
            )
            .first()
        )

    def _ensure_no_open_entry(self, user_id: str, task_id: str) -> None:
        if self._open_entry(user_id, task_id) is not None:
            raise ConflictError("You already have a running timer on this task")


class FileService(StoreService):
    """Service for attachment metadata. Bytes live elsewhere."""

    def attach_file(self, caller: Caller, task_id: str, data: FileAttach) -> FileModel:
        task, role = self._load_task(caller, task_id)
        require(role, Action.CREATE_TASK)

        attachment = FileModel(
            id=generate_id(),
            task_id=task.id,
            project_id=task.project_id,
            name=data.name,
            url=data.url,
            size=data.size,
            created_at=utc_now(),
        )
        with self.transaction():
            self.db.add(attachment)
            self.activity.record(
                ActivityType.FILE_ATTACHED,
                organization_id=task.project.organization_id,
                actor_id=caller.user_id,
                project_id=task.project_id,
                task_id=task.id,
                meta={"file_id": attachment.id, "name": attachment.name, "size": attachment.size},
            )

        self._publish(
            [(task_scope(task.id), EventType.FILE_ATTACHED, attachment.to_dict())], caller
        )
        return attachment

    def list_files(self, caller: Caller, task_id: str) -> List[FileModel]:
        task, role = self._load_task(caller, task_id)
        require(role, Action.VIEW_TASK)
        return (
            self.db.query(FileModel)
            .filter(FileModel.task_id == task.id)
            .order_by(FileModel.created_at, FileModel.id)
            .all()
        )


class InboxService(StoreService):
    """The caller's own notifications."""

    def list_notifications(
        self, caller: Caller, unread_only: bool = False, limit: int = 50
    ) -> List[NotificationModel]:
        ensure_authenticated(caller)
        return self.notifications.list_for_user(caller.user_id, unread_only=unread_only, limit=limit)

    def mark_notification_read(self, caller: Caller, notification_id: str) -> NotificationModel:
        ensure_authenticated(caller)
        notification = self.db.get(NotificationModel, notification_id)
        if notification is None or notification.user_id != caller.user_id:
            raise NotFoundError("Notification", notification_id)
        if notification.read:
            return notification

        with self.transaction():
            notification.read = True
        return notification
