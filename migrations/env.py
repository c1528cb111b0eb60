"""Alembic environment configuration.

Migrations run against the system store with the psycopg v3 sync driver;
the URL comes from application settings. Autogenerate compares against
the ORM metadata (``analytics_projects``) and the default tenant's Core
tables (``analytics_devices``). Tables of other prefixes or stores are
created through the admin ``init`` endpoint.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from analytics_ingest.config import get_settings
from analytics_ingest.storage.orm import DEFAULT_TABLE_PREFIX, Base
from analytics_ingest.storage.tables import tables_for_prefix

config = context.config
config.set_main_option("sqlalchemy.url", get_settings().database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = [
    Base.metadata,
    tables_for_prefix(DEFAULT_TABLE_PREFIX).metadata,
]


def run_migrations_offline() -> None:
    """Emit SQL to the script output without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in a transaction on a NullPool sync engine."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
