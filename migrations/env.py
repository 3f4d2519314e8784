"""Alembic environment for the Workboard schema.

The database URL is taken, in order, from ``alembic -x database_url=...``,
then from Workboard settings (``DATABASE_URL`` or ``.env``).
"""

import os
import sys
from logging.config import fileConfig

from alembic import context

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from workboard.config import get_settings  # noqa: E402
from workboard.db import models  # noqa: F401,E402
from workboard.db.base import Base, build_engine, get_database_url  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def resolve_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("database_url")
    return get_database_url(override or get_settings().database_url)


def skip_empty_autogenerate(context_, revision, directives) -> None:
    """Don't write a revision file when autogenerate finds no changes."""
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []


def configure_options(dialect_name: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # SQLite cannot ALTER constraints in place
        "render_as_batch": dialect_name == "sqlite",
        "process_revision_directives": skip_empty_autogenerate,
    }


def run_migrations_offline() -> None:
    """Emit SQL for the resolved URL without connecting."""
    url = resolve_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url.split(":", 1)[0].split("+", 1)[0]),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection."""
    engine = build_engine(resolve_url())
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **configure_options(connection.dialect.name))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
