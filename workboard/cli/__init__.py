"""
Command Line Interface for Workboard.
"""

from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import func

from ..config import get_settings
from ..db.base import build_engine, get_session_factory, init_database
from ..db.models import MembershipModel, OrganizationModel, ProjectModel, TaskModel
from ..errors import WorkboardError
from ..identity import get_user_by_email, load_caller, register_user
from ..log_config import configure_logging
from ..policy import Role
from ..primitives import Priority, Status
from ..schemas import (
    InviteCreate,
    LabelCreate,
    OrganizationCreate,
    ProjectCreate,
    TaskCreate,
)
from ..store import WorkItemStore

app = typer.Typer(help="Workboard - multi-tenant project and task tracking")
console = Console()


def _session(database_url: Optional[str]):
    engine = build_engine(database_url or get_settings().database_url)
    return engine, get_session_factory(engine)()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run with auto-reload"),
):
    """Start the Workboard API server."""
    settings = get_settings()
    rprint(Panel.fit("Starting Workboard", style="bold blue"))
    uvicorn.run(
        "workboard.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=dev or settings.debug,
        workers=1 if (dev or settings.debug) else settings.api_workers,
    )


@app.command("init-db")
def init_db(
    database_url: Optional[str] = typer.Option(None, help="Overrides DATABASE_URL"),
):
    """Create all tables."""
    engine = build_engine(database_url or get_settings().database_url)
    init_database(engine)
    console.print(f"✅ Database ready at {engine.url.render_as_string(hide_password=True)}")


@app.command()
def seed(
    database_url: Optional[str] = typer.Option(None, help="Overrides DATABASE_URL"),
    owner_email: str = typer.Option("owner@example.com", help="Email of the demo owner"),
    slug: str = typer.Option("demo", help="Slug of the demo organization"),
):
    """Create a demo organization with a project and a handful of tasks."""
    configure_logging()
    engine, db = _session(database_url)
    init_database(engine)

    try:
        owner = get_user_by_email(db, owner_email) or register_user(db, owner_email, "Demo Owner")
        member = get_user_by_email(db, "member@example.com") or register_user(
            db, "member@example.com", "Demo Member"
        )

        store = WorkItemStore(db)
        caller = load_caller(db, owner.id)
        organization = store.organizations.create_organization(
            caller, OrganizationCreate(name="Demo Organization", slug=slug)
        )
        caller = load_caller(db, owner.id)

        invite = store.organizations.invite_member(
            caller, organization.id, InviteCreate(email=member.email, role=Role.MEMBER)
        )
        store.organizations.accept_invite(load_caller(db, member.id), invite.token)

        bug = store.organizations.create_label(caller, organization.id, LabelCreate(name="bug", color="#ef4444"))
        feature = store.organizations.create_label(
            caller, organization.id, LabelCreate(name="feature", color="#22c55e")
        )
        project = store.projects.create_project(
            caller,
            organization.id,
            ProjectCreate(name="Website Relaunch", key="WEB", budget_cents=2_500_000),
        )

        samples = [
            ("Design landing page", Status.IN_PROGRESS, Priority.HIGH, [feature.id]),
            ("Fix signup validation", Status.TODO, Priority.URGENT, [bug.id]),
            ("Write launch announcement", Status.BACKLOG, Priority.MEDIUM, []),
            ("Set up analytics", Status.REVIEW, Priority.LOW, [feature.id]),
        ]
        for title, status, priority, labels in samples:
            store.tasks.create_task(
                caller,
                project.id,
                TaskCreate(
                    title=title,
                    status=status,
                    priority=priority,
                    assignee_ids=[member.id],
                    label_ids=labels,
                ),
            )
    except WorkboardError as e:
        console.print(f"❌ Seeding failed: {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    console.print(f"✅ Seeded organization '{slug}' (owner {owner_email})")


@app.command()
def orgs(
    database_url: Optional[str] = typer.Option(None, help="Overrides DATABASE_URL"),
):
    """List organizations with member, project and task counts."""
    _, db = _session(database_url)
    try:
        rows = db.query(OrganizationModel).order_by(OrganizationModel.slug).all()
        if not rows:
            console.print("No organizations yet")
            return

        table = Table(title="Organizations", show_header=True, header_style="bold cyan")
        table.add_column("Slug", style="yellow")
        table.add_column("Name")
        table.add_column("Members", style="green")
        table.add_column("Projects", style="blue")
        table.add_column("Tasks", style="magenta")

        for organization in rows:
            members = (
                db.query(func.count(MembershipModel.id))
                .filter(MembershipModel.organization_id == organization.id)
                .scalar()
            )
            projects = (
                db.query(func.count(ProjectModel.id))
                .filter(ProjectModel.organization_id == organization.id)
                .scalar()
            )
            tasks = (
                db.query(func.count(TaskModel.id))
                .join(ProjectModel, ProjectModel.id == TaskModel.project_id)
                .filter(ProjectModel.organization_id == organization.id)
                .scalar()
            )
            table.add_row(
                organization.slug, organization.name, str(members), str(projects), str(tasks)
            )

        console.print(table)
    finally:
        db.close()


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Workboard v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
