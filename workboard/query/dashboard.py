"""
Organization dashboard and activity feed.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from ..db.activity_service import ActivityService
from ..db.models import ActivityModel, MembershipModel, ProjectModel, TaskModel, TimeEntryModel
from ..errors import AccessError
from ..identity import Caller, ensure_authenticated
from ..policy import Action, authorize
from ..primitives import Status
from ..schemas import DashboardMetrics

RECENT_ACTIVITY_LIMIT = 10


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _cost_cents(seconds: int, rate_cents: int) -> float:
    return seconds * rate_cents / 3600


class DashboardService:
    """Aggregates over one organization's projects, tasks and time."""

    def __init__(self, db: Session):
        self.db = db
        self.activity = ActivityService(db)

    def _require_viewer(self, caller: Caller, organization_id: str) -> None:
        ensure_authenticated(caller)
        membership = self.db.scalar(
            select(MembershipModel).where(
                MembershipModel.organization_id == organization_id,
                MembershipModel.user_id == caller.user_id,
            )
        )
        if membership is None or not authorize(membership.role, Action.VIEW_TASK):
            raise AccessError("You are not a member of this organization")

    def dashboard_metrics(
        self,
        caller: Caller,
        organization_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        project_ids: Optional[Sequence[str]] = None,
        today: Optional[date] = None,
    ) -> DashboardMetrics:
        """
        Summarize an organization, optionally narrowed to some projects.

        ``start``/``end`` bound time entries and activity by day (inclusive).
        Budget burn prices every logged second at its entry's rate;
        the billable total counts billable entries only.
        """
        self._require_viewer(caller, organization_id)
        today = today or datetime.now(timezone.utc).date()

        project_stmt = select(ProjectModel.id, ProjectModel.budget_cents).where(
            ProjectModel.organization_id == organization_id
        )
        if project_ids:
            project_stmt = project_stmt.where(ProjectModel.id.in_(list(project_ids)))
        projects = self.db.execute(project_stmt).all()
        scoped_ids = [row.id for row in projects]

        tasks_by_status = {status.value: 0 for status in Status}
        overdue = 0
        seconds_logged = 0
        billable = 0.0
        burn = 0.0

        if scoped_ids:
            for status, count in self.db.execute(
                select(TaskModel.status, func.count())
                .where(TaskModel.project_id.in_(scoped_ids))
                .group_by(TaskModel.status)
            ):
                tasks_by_status[status.value] = count

            overdue = self.db.scalar(
                select(func.count())
                .select_from(TaskModel)
                .where(
                    TaskModel.project_id.in_(scoped_ids),
                    TaskModel.due_date < today,
                    TaskModel.status != Status.DONE,
                )
            ) or 0

            entries = select(
                TimeEntryModel.seconds, TimeEntryModel.rate_cents, TimeEntryModel.billable
            ).join(TaskModel, TaskModel.id == TimeEntryModel.task_id).where(
                TaskModel.project_id.in_(scoped_ids),
                TimeEntryModel.ended_at.is_not(None),
            )
            if start:
                entries = entries.where(TimeEntryModel.started_at >= _day_start(start))
            if end:
                entries = entries.where(
                    TimeEntryModel.started_at < _day_start(end + timedelta(days=1))
                )
            for row in self.db.execute(entries):
                seconds_logged += row.seconds
                cost = _cost_cents(row.seconds, row.rate_cents)
                burn += cost
                if row.billable:
                    billable += cost

        activity_stmt = select(ActivityModel).where(
            ActivityModel.organization_id == organization_id
        )
        if project_ids:
            activity_stmt = activity_stmt.where(ActivityModel.project_id.in_(scoped_ids))
        if start:
            activity_stmt = activity_stmt.where(ActivityModel.created_at >= _day_start(start))
        if end:
            activity_stmt = activity_stmt.where(
                ActivityModel.created_at < _day_start(end + timedelta(days=1))
            )

        scoped_activity = activity_stmt.subquery()
        active_users = self.db.scalar(
            select(func.count(distinct(scoped_activity.c.actor_id)))
        ) or 0
        recent = self.db.scalars(
            activity_stmt.order_by(ActivityModel.created_at.desc(), ActivityModel.id.desc()).limit(
                RECENT_ACTIVITY_LIMIT
            )
        ).all()

        return DashboardMetrics(
            total_projects=len(projects),
            tasks_by_status=tasks_by_status,
            overdue_tasks=overdue,
            time_logged_seconds=seconds_logged,
            billable_total_cents=int(round(billable)),
            budget_burn_cents=int(round(burn)),
            planned_budget_cents=sum(row.budget_cents for row in projects),
            active_users=active_users,
            recent_activity=[a.to_dict() for a in recent],
        )

    def list_activity(
        self,
        caller: Caller,
        organization_id: str,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ActivityModel]:
        """Newest-first activity feed for an organization."""
        self._require_viewer(caller, organization_id)
        return self.activity.list(
            organization_id, project_id=project_id, task_id=task_id, limit=limit
        )
