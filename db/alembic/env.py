import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

BACKEND_DIR = Path(__file__).resolve().parents[2] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

from models import Base  # noqa: E402


def database_url() -> str:
    # precedence: `alembic -x url=...`, then DATABASE_URL, then alembic.ini
    overrides = context.get_x_argument(as_dictionary=True)
    return (
        overrides.get("url")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )


def context_options(url: str) -> dict:
    # SQLite cannot ALTER most columns in place
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_offline(url: str) -> None:
    context.configure(url=url, literal_binds=True, **context_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_online(url: str) -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **context_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline(database_url())
else:
    run_online(database_url())
