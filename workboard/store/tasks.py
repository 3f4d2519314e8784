"""
Task operations: create, partial update, reorder, reparent and delete.

Placement rules:
- a parent must be a task of the same project
- a parent must itself be top-level (one level of subtasking)
- a task that has subtasks cannot become a subtask
- no task may become its own ancestor

order_index values come from the project's task counter and are never
reused. Reordering swaps positions with the task holding the requested
index.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..db.models import (
    EpicModel,
    LabelModel,
    MembershipModel,
    NotificationModel,
    ProjectModel,
    TaskAssigneeModel,
    TaskLabelModel,
    TaskModel,
)
from ..errors import InputValidationError, NotFoundError
from ..identity import Caller
from ..policy import Action, require
from ..primitives import ActivityType, generate_id, utc_now
from ..realtime import EventType, project_scope, task_scope, user_scope
from ..schemas import TaskCreate, TaskUpdate
from ._base import StoreService, change_set, check_date_order, unique_ids

logger = structlog.get_logger()

SCALAR_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "points",
    "start_date",
    "due_date",
    "epic_id",
)

# Placeholder index held by a task while it swaps places with another
SWAP_SLOT = -1


class TaskService(StoreService):
    """Service for managing tasks and subtasks."""

    def create_task(self, caller: Caller, project_id: str, data: TaskCreate) -> TaskModel:
        """Create a task (or subtask) at the end of the project's order.

        Args:
            caller: Authenticated caller
            project_id: Project the task belongs to
            data: Task fields, including initial assignees and labels

        Returns:
            The committed TaskModel

        Raises:
            NotFoundError: project missing or in a foreign organization
            AccessError: caller's role lacks create_task
            InputValidationError: placement, date order, assignee or label problems
        """
        project, _ = self._load_project(caller, project_id)
        self._require(caller, project.organization_id, Action.CREATE_TASK)

        check_date_order(data.start_date, data.due_date)
        self._check_epic(project, data.epic_id)

        assignee_ids = unique_ids(data.assignee_ids)
        label_ids = unique_ids(data.label_ids)
        self._check_assignees(project.organization_id, assignee_ids)
        self._check_labels(project.organization_id, label_ids)

        now = utc_now()
        with self.transaction():
            order_index = self._bump_task_sequence(project.id)
            parent = None
            if data.parent_task_id is not None:
                self.db.expire_all()
                parent = self._resolve_parent(project, data.parent_task_id)
            task = TaskModel(
                id=generate_id(),
                project_id=project.id,
                epic_id=data.epic_id,
                parent_task=parent,
                title=data.title,
                description=data.description,
                status=data.status,
                priority=data.priority,
                points=data.points,
                start_date=data.start_date,
                due_date=data.due_date,
                order_index=order_index,
                created_by_id=caller.user_id,
                created_at=now,
                updated_at=now,
            )
            task.assignees = [
                TaskAssigneeModel(id=generate_id(), user_id=user_id) for user_id in assignee_ids
            ]
            task.labels = [
                TaskLabelModel(id=generate_id(), label_id=label_id) for label_id in label_ids
            ]
            self.db.add(task)
            self.activity.record(
                ActivityType.TASK_CREATED,
                organization_id=project.organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                task_id=task.id,
                meta={
                    "title": task.title,
                    "order_index": order_index,
                    "parent_task_id": data.parent_task_id,
                    "assignee_ids": assignee_ids,
                },
            )
            notified = self._notify_assignees(caller, project, task, assignee_ids)

        logger.info(
            "task_created", task_id=task.id, project_id=project.id, order_index=order_index
        )
        events = [(project_scope(project.id), EventType.TASK_CREATED, task.to_dict())]
        events.extend(self._notification_events(notified))
        self._publish(events, caller)
        return task

    def get_task(self, caller: Caller, task_id: str) -> TaskModel:
        task, role = self._load_task(caller, task_id)
        require(role, Action.VIEW_TASK)
        return task

    def update_task(self, caller: Caller, task_id: str, data: TaskUpdate) -> TaskModel:
        """
        Apply a partial update.

        Status, assignee, order and parent changes all go through here and
        are gated by move_task. Exactly one Activity is written; its type is
        the most significant change and its meta lists every change.
        A payload that changes nothing writes nothing.
        """
        task, _ = self._load_task(caller, task_id)
        project = task.project
        self._require(caller, project.organization_id, Action.MOVE_TASK)

        requested = data.changes()
        changes: Dict[str, Any] = {}

        for field in SCALAR_FIELDS:
            if field in requested and getattr(task, field) != requested[field]:
                changes[field] = change_set(getattr(task, field), requested[field])

        if "epic_id" in changes:
            self._check_epic(project, requested["epic_id"])

        if "parent_task_id" in requested and requested["parent_task_id"] != task.parent_task_id:
            changes["parent_task_id"] = change_set(task.parent_task_id, requested["parent_task_id"])

        check_date_order(
            requested.get("start_date", task.start_date),
            requested.get("due_date", task.due_date),
        )

        added_assignees: List[str] = []
        if requested.get("assignee_ids") is not None:
            new_ids = unique_ids(requested["assignee_ids"])
            current = task.assignee_ids
            if sorted(new_ids) != current:
                self._check_assignees(project.organization_id, new_ids)
                added_assignees = [u for u in new_ids if u not in current]
                changes["assignee_ids"] = change_set(current, sorted(new_ids))

        if requested.get("label_ids") is not None:
            new_ids = unique_ids(requested["label_ids"])
            current = task.label_ids
            if sorted(new_ids) != current:
                self._check_labels(project.organization_id, new_ids)
                changes["label_ids"] = change_set(current, sorted(new_ids))

        target_index = requested.get("order_index")
        if target_index is not None and target_index != task.order_index:
            changes["order_index"] = change_set(task.order_index, target_index)

        if not changes:
            return task

        swapped: Optional[TaskModel] = None
        with self.transaction():
            self._bump_task_sequence(project.id, step=0)
            if "parent_task_id" in changes:
                # Placement is only decided once the project lock is held
                self.db.expire_all()
                if self.db.get(TaskModel, task.id) is None:
                    raise NotFoundError("Task", task.id)
                if requested["parent_task_id"] is not None:
                    self._resolve_parent(project, requested["parent_task_id"], task=task)
            if "order_index" in changes:
                swapped = self._swap_order(task, target_index)

            for field in SCALAR_FIELDS:
                if field in changes:
                    setattr(task, field, requested[field])
            if "parent_task_id" in changes:
                task.parent_task_id = requested["parent_task_id"]
            if "assignee_ids" in changes:
                self._replace_assignees(task, unique_ids(requested["assignee_ids"]))
            if "label_ids" in changes:
                self._replace_labels(task, unique_ids(requested["label_ids"]))
            task.updated_at = utc_now()

            self.activity.record(
                self._activity_type_for(changes),
                organization_id=project.organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                task_id=task.id,
                meta={"title": task.title, "changes": changes},
            )
            notified = self._notify_assignees(caller, project, task, added_assignees)

        # Reparenting leaves stale collections on the old and new parent
        if "parent_task_id" in changes:
            self.db.expire_all()

        logger.info("task_updated", task_id=task.id, fields=sorted(changes))
        payload = task.to_dict()
        events = [
            (project_scope(project.id), EventType.TASK_UPDATED, payload),
            (task_scope(task.id), EventType.TASK_UPDATED, payload),
        ]
        if "order_index" in changes or "parent_task_id" in changes:
            events.append(
                (
                    project_scope(project.id),
                    EventType.TASK_MOVED,
                    {
                        "task_id": task.id,
                        "order_index": task.order_index,
                        "parent_task_id": task.parent_task_id,
                        "swapped_with": (
                            {"task_id": swapped.id, "order_index": swapped.order_index}
                            if swapped is not None
                            else None
                        ),
                    },
                )
            )
        events.extend(self._notification_events(notified))
        self._publish(events, caller)
        return task

    def delete_task(self, caller: Caller, task_id: str) -> List[str]:
        """
        Delete a task together with its subtasks and everything hanging off
        them (assignees, label joins, comments, time entries, files).

        One Activity is written for the cascade root. Returns the ids of
        every deleted task, root first.
        """
        task, _ = self._load_task(caller, task_id)
        project = task.project
        self._require(caller, project.organization_id, Action.DELETE_TASK)

        deleted_ids = self._subtree_ids(task)
        title = task.title
        with self.transaction():
            self.db.delete(task)
            self.activity.record(
                ActivityType.TASK_DELETED,
                organization_id=project.organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                task_id=task_id,
                meta={"title": title, "deleted_task_ids": deleted_ids},
            )

        self.db.expire_all()
        logger.info("task_deleted", task_id=task_id, cascade_size=len(deleted_ids))
        payload = {"id": task_id, "project_id": project.id, "deleted_task_ids": deleted_ids}
        events = [(project_scope(project.id), EventType.TASK_DELETED, payload)]
        events.extend((task_scope(tid), EventType.TASK_DELETED, payload) for tid in deleted_ids)
        self._publish(events, caller)
        return deleted_ids

    # -------------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------------

    def _resolve_parent(
        self, project: ProjectModel, parent_id: str, task: Optional[TaskModel] = None
    ) -> TaskModel:
        parent = self.db.get(TaskModel, parent_id)
        if parent is None or parent.project_id != project.id:
            raise InputValidationError("Parent task must be a task of the same project")

        if task is not None:
            self._check_no_cycle(task, parent)
            if task.subtasks:
                raise InputValidationError("A task with subtasks cannot become a subtask")

        if parent.parent_task_id is not None:
            raise InputValidationError("A subtask cannot have subtasks of its own")
        return parent

    def _check_no_cycle(self, task: TaskModel, parent: TaskModel) -> None:
        """Walk up from the new parent; meeting ``task`` would close a cycle."""
        seen = set()
        node: Optional[TaskModel] = parent
        while node is not None and node.id not in seen:
            if node.id == task.id:
                raise InputValidationError("A task cannot be placed under itself or its subtasks")
            seen.add(node.id)
            node = node.parent_task

    def _subtree_ids(self, task: TaskModel) -> List[str]:
        ids = []
        seen = set()
        stack = [task]
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            ids.append(node.id)
            stack.extend(sorted(node.subtasks, key=lambda t: t.order_index, reverse=True))
        return ids

    def _swap_order(self, task: TaskModel, target_index: int) -> TaskModel:
        other = (
            self.db.query(TaskModel)
            .filter(TaskModel.project_id == task.project_id, TaskModel.order_index == target_index)
            .first()
        )
        if other is None:
            raise InputValidationError(
                f"No task in this project holds order_index {target_index}"
            )

        current_index = task.order_index
        task.order_index = SWAP_SLOT
        self.db.flush()
        other.order_index = current_index
        self.db.flush()
        task.order_index = target_index
        return other

    @staticmethod
    def _activity_type_for(changes: Dict[str, Any]) -> ActivityType:
        if "assignee_ids" in changes:
            return ActivityType.TASK_ASSIGNED
        if "status" in changes:
            return ActivityType.TASK_STATUS_CHANGED
        if "order_index" in changes or "parent_task_id" in changes:
            return ActivityType.TASK_MOVED
        return ActivityType.TASK_UPDATED

    # -------------------------------------------------------------------------
    # Reference checks
    # -------------------------------------------------------------------------

    def _check_epic(self, project: ProjectModel, epic_id: Optional[str]) -> None:
        if epic_id is None:
            return
        epic = self.db.get(EpicModel, epic_id)
        if epic is None or epic.project_id != project.id:
            raise InputValidationError("Epic must belong to the task's project")

    def _check_assignees(self, organization_id: str, user_ids: List[str]) -> None:
        if not user_ids:
            return
        members = {
            row.user_id
            for row in self.db.query(MembershipModel.user_id).filter(
                MembershipModel.organization_id == organization_id,
                MembershipModel.user_id.in_(user_ids),
            )
        }
        missing = [u for u in user_ids if u not in members]
        if missing:
            raise InputValidationError(
                "Assignees must be members of the organization", details={"user_ids": missing}
            )

    def _check_labels(self, organization_id: str, label_ids: List[str]) -> None:
        if not label_ids:
            return
        known = {
            row.id
            for row in self.db.query(LabelModel.id).filter(
                LabelModel.organization_id == organization_id,
                LabelModel.id.in_(label_ids),
            )
        }
        missing = [label_id for label_id in label_ids if label_id not in known]
        if missing:
            raise InputValidationError(
                "Labels must belong to the organization", details={"label_ids": missing}
            )

    # -------------------------------------------------------------------------
    # Joins and notifications
    # -------------------------------------------------------------------------

    def _replace_assignees(self, task: TaskModel, user_ids: List[str]) -> None:
        keep = set(user_ids)
        for row in list(task.assignees):
            if row.user_id not in keep:
                task.assignees.remove(row)
        existing = {row.user_id for row in task.assignees}
        for user_id in user_ids:
            if user_id not in existing:
                task.assignees.append(TaskAssigneeModel(id=generate_id(), user_id=user_id))

    def _replace_labels(self, task: TaskModel, label_ids: List[str]) -> None:
        keep = set(label_ids)
        for row in list(task.labels):
            if row.label_id not in keep:
                task.labels.remove(row)
        existing = {row.label_id for row in task.labels}
        for label_id in label_ids:
            if label_id not in existing:
                task.labels.append(TaskLabelModel(id=generate_id(), label_id=label_id))

    def _notify_assignees(
        self, caller: Caller, project: ProjectModel, task: TaskModel, user_ids: List[str]
    ) -> List[NotificationModel]:
        """Stage a notification for each newly assigned user other than the actor."""
        return [
            self.notifications.create(
                user_id=user_id,
                title=f"You were assigned to \"{task.title}\"",
                body=f"{project.key} · {project.name}",
            )
            for user_id in user_ids
            if user_id != caller.user_id
        ]

    @staticmethod
    def _notification_events(notifications: List[NotificationModel]) -> List[Tuple]:
        return [
            (user_scope(n.user_id), EventType.NOTIFICATION_CREATED, n.to_dict())
            for n in notifications
        ]
