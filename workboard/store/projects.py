"""
Project and epic operations.
"""

from typing import Any, Dict, List, Optional

import structlog

from ..db.models import EpicModel, ProjectModel
from ..errors import ConflictError, InputValidationError
from ..identity import Caller
from ..policy import Action, require
from ..primitives import ActivityType, generate_id, utc_now
from ..realtime import EventType, organization_scope, project_scope
from ..schemas import EpicCreate, ProjectCreate, ProjectUpdate
from ._base import StoreService, change_set, check_date_order

logger = structlog.get_logger()


class ProjectService(StoreService):
    """Service for managing projects and their epics."""

    def create_project(
        self, caller: Caller, organization_id: str, data: ProjectCreate
    ) -> ProjectModel:
        """Create a project. Any member of the organization may do this.

        Args:
            caller: Authenticated caller
            organization_id: Organization that will own the project
            data: Validated project fields

        Returns:
            The committed ProjectModel

        Raises:
            AccessError: caller is not a member of the organization
            ConflictError: the key is already used in this organization
            InputValidationError: bad lead or date order
        """
        self._require_member(caller, organization_id)
        check_date_order(data.start_date, data.due_date)
        self._check_lead(organization_id, data.lead_id)
        self._check_key_free(organization_id, data.key)

        now = utc_now()
        project = ProjectModel(
            id=generate_id(),
            organization_id=organization_id,
            name=data.name,
            key=data.key,
            description=data.description,
            lead_id=data.lead_id,
            status=data.status,
            priority=data.priority,
            budget_cents=data.budget_cents,
            start_date=data.start_date,
            due_date=data.due_date,
            task_sequence=0,
            created_at=now,
            updated_at=now,
        )
        with self.transaction():
            self.db.add(project)
            self.activity.record(
                ActivityType.PROJECT_CREATED,
                organization_id=organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                meta={"name": project.name, "key": project.key},
            )

        logger.info("project_created", project_id=project.id, organization_id=organization_id)
        self._publish(
            [(organization_scope(organization_id), EventType.PROJECT_CREATED, project.to_dict())],
            caller,
        )
        return project

    def update_project(self, caller: Caller, project_id: str, data: ProjectUpdate) -> ProjectModel:
        """Apply a partial update. Requires edit_project."""
        project, _ = self._load_project(caller, project_id)
        self._require(caller, project.organization_id, Action.EDIT_PROJECT)

        requested = data.changes()
        changes: Dict[str, Any] = {}
        for field, value in requested.items():
            before = getattr(project, field)
            if before != value:
                changes[field] = change_set(before, value)

        if not changes:
            return project

        check_date_order(
            requested.get("start_date", project.start_date),
            requested.get("due_date", project.due_date),
        )
        if "lead_id" in changes:
            self._check_lead(project.organization_id, requested["lead_id"])
        if "key" in changes:
            self._check_key_free(project.organization_id, requested["key"])

        with self.transaction():
            for field in changes:
                setattr(project, field, requested[field])
            project.updated_at = utc_now()
            self.activity.record(
                ActivityType.PROJECT_UPDATED,
                organization_id=project.organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                meta={"changes": changes},
            )

        payload = project.to_dict()
        self._publish(
            [
                (organization_scope(project.organization_id), EventType.PROJECT_UPDATED, payload),
                (project_scope(project.id), EventType.PROJECT_UPDATED, payload),
            ],
            caller,
        )
        return project

    def get_project(self, caller: Caller, project_id: str) -> ProjectModel:
        project, role = self._load_project(caller, project_id)
        require(role, Action.VIEW_TASK)
        return project

    def list_projects(self, caller: Caller, organization_id: str) -> List[ProjectModel]:
        self._require_member(caller, organization_id)
        return (
            self.db.query(ProjectModel)
            .filter(ProjectModel.organization_id == organization_id)
            .order_by(ProjectModel.key)
            .all()
        )

    def _check_lead(self, organization_id: str, lead_id: Optional[str]) -> None:
        if lead_id is not None and not self._is_member(organization_id, lead_id):
            raise InputValidationError("Project lead must be a member of the organization")

    def _check_key_free(self, organization_id: str, key: str) -> None:
        taken = (
            self.db.query(ProjectModel.id)
            .filter(ProjectModel.organization_id == organization_id, ProjectModel.key == key)
            .first()
        )
        if taken is not None:
            raise ConflictError(f"Project key '{key}' is already used in this organization")

    # -------------------------------------------------------------------------
    # Epics
    # -------------------------------------------------------------------------

    def create_epic(self, caller: Caller, project_id: str, data: EpicCreate) -> EpicModel:
        project, _ = self._load_project(caller, project_id)
        self._require(caller, project.organization_id, Action.EDIT_PROJECT)

        epic = EpicModel(
            id=generate_id(), project_id=project.id, name=data.name, created_at=utc_now()
        )
        with self.transaction():
            self.db.add(epic)
            self.activity.record(
                ActivityType.EPIC_CREATED,
                organization_id=project.organization_id,
                actor_id=caller.user_id,
                project_id=project.id,
                meta={"epic_id": epic.id, "name": epic.name},
            )

        self._publish(
            [(project_scope(project.id), EventType.EPIC_CREATED, epic.to_dict())], caller
        )
        return epic

    def list_epics(self, caller: Caller, project_id: str) -> List[EpicModel]:
        project, _ = self._load_project(caller, project_id)
        return (
            self.db.query(EpicModel)
            .filter(EpicModel.project_id == project.id)
            .order_by(EpicModel.created_at, EpicModel.id)
            .all()
        )
