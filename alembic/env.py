import asyncio
from logging.config import fileConfig

from alembic import context

import projectshelf.models  # noqa: F401  registers every table on Base.metadata
from projectshelf.config import settings
from projectshelf.database import Base, Database

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    # -x database_url=... overrides the configured URL, e.g. for a test database
    return context.get_x_argument(as_dictionary=True).get("database_url", settings.database_url)


def configure_context(**kwargs) -> None:
    url = kwargs.pop("url", None) or get_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


async def run_migrations_online() -> None:
    database = Database(get_url(), environment=settings.environment)
    database.connect()

    def do_run_migrations(sync_connection):
        configure_context(connection=sync_connection, url=database.url)
        with context.begin_transaction():
            context.run_migrations()

    try:
        async with database.engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await database.dispose()


def run_migrations_offline() -> None:
    url = get_url()
    configure_context(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
