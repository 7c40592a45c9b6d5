from logging.config import fileConfig

from sqlalchemy import create_engine, pool, text

from alembic import context
from lycaon.config.settings import DatabaseSettings
from lycaon.storage.database import database_url
from lycaon.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DATABASE_* env vars (and .env, loaded by lycaon.config.settings); sync driver
db_settings = DatabaseSettings()
schema = db_settings.schema_
url = database_url(db_settings, driver="psycopg")

target_metadata = Base.metadata


def include_name(name, type_, parent_names):
    """Autogenerate only looks at the incident schema."""
    if type_ == "schema":
        return name == schema
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table_schema=schema,
        include_schemas=True,
        include_name=include_name,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(
        url=url.render_as_string(hide_password=False),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(url, poolclass=pool.NullPool)

    with engine.connect() as connection:
        # version table lives in the schema, so it must exist first
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        connection.commit()

        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
