"""Alembic environment for the statement tables in ``libs/db``.

``DATABASE_URL`` (optionally from the nearest ``.env``) takes precedence over
``sqlalchemy.url`` in ``alembic.ini``. SQLite targets run in batch mode so
column changes in later revisions work there too.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from dotenv import find_dotenv, load_dotenv
from sqlalchemy import create_engine, pool

from db import metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(find_dotenv(usecwd=True), override=False)


def _url() -> str:
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("DATABASE_URL is not set and alembic.ini has no sqlalchemy.url")
    return url


def _configure(**kwargs) -> None:
    url = _url()
    context.configure(
        target_metadata=metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_offline() -> None:
    _configure(url=_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
