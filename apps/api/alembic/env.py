from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from leadops.billing import models as billing_models  # noqa: F401
from leadops.core.config import get_settings
from leadops.core.database import Base
from leadops.followups import models as followup_models  # noqa: F401
from leadops.leads import models as lead_models  # noqa: F401
from leadops.platform.audit import models as audit_models  # noqa: F401
from leadops.team import models as team_models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    # DATABASE_URL (read through Settings) wins over alembic.ini
    return get_settings().database_url or config.get_main_option("sqlalchemy.url") or ""


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _database_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
