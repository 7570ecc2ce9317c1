import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv()

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pos_pairing.database.base import Base, UTCDateTime, UUIDType
from pos_pairing.database.engine import normalize_database_url
from pos_pairing.models import *  # noqa: F401, F403

config = context.config


def render_item(type_, obj, autogen_context):
    """Render the portable column types by name instead of the full module path."""
    if type_ == "type" and isinstance(obj, UUIDType):
        autogen_context.imports.add("from pos_pairing.database.base import UUIDType")
        return "UUIDType()"
    if type_ == "type" and isinstance(obj, UTCDateTime):
        autogen_context.imports.add("from pos_pairing.database.base import UTCDateTime")
        return "UTCDateTime()"
    return False

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url():
    url = os.getenv("DATABASE_URL", config.get_main_option("sqlalchemy.url"))
    return normalize_database_url(url)


def run_migrations_offline() -> None:
    url = get_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section)
    configuration["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_item=render_item,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
