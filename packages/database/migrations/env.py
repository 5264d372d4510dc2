import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from dotenv import load_dotenv

from alembic import context

from tq_database.base import Base
from tq_database.session import normalize_database_url

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
load_dotenv(os.path.join(project_root, ".env.local"))
load_dotenv(os.path.join(project_root, ".env"))


config = context.config

# DIRECT_DATABASE_URL bypasses a pooler for DDL; falls back to DATABASE_URL
database_url = normalize_database_url(
    os.getenv("DIRECT_DATABASE_URL") or os.getenv("DATABASE_URL", "")
)
# Escape percent signs to prevent parsing issues
config.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Importing Base registers every table on the shared metadata
target_metadata = Base.metadata


def _compare_type(
    context, inspected_column, metadata_column, inspected_type, metadata_type
):
    """SQLModel's AutoString and reflected TEXT/VARCHAR are the same column in PostgreSQL."""
    from sqlmodel.sql.sqltypes import AutoString
    import sqlalchemy.types as satypes

    if isinstance(inspected_type, (satypes.Text, satypes.String)) and isinstance(metadata_type, AutoString):
        return False
    if isinstance(inspected_type, AutoString) and isinstance(metadata_type, (satypes.Text, satypes.String)):
        return False
    return None


def include_object(obj, name, type_, reflected, compare_to):
    """
    Public-schema FKs reflect without the 'public.' prefix while the models
    declare it explicitly; suppress that permanent cosmetic diff.
    """
    if type_ == "foreign_key_constraint":
        table = getattr(obj, "parent", None)
        schema = getattr(table, "schema", None) if table is not None else None
        if schema is None or schema == "public":
            return False
    return True


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=_compare_type,
        include_schemas=True,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    # Disable prepared statement caching for PgBouncer compatibility
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args={
            "prepared_statement_cache_size": 0,
            "statement_cache_size": 0,
        },
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
