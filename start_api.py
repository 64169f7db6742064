#!/usr/bin/env python3
"""
Container entrypoint: wait for Postgres, migrate, seed staff accounts, exec uvicorn.

SKIP_MIGRATIONS=1 skips the alembic step (several API replicas sharing one DB).
"""
import os
import sys

HERE = os.path.dirname(os.path.abspath(__file__))


def migrate(database_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(os.path.join(HERE, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(HERE, "alembic"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(cfg, "head")


def serve() -> None:
    port = os.getenv("PORT", "8000")
    os.execv(
        sys.executable,
        [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port,
         "--proxy-headers"],
    )


def main() -> None:
    import wait_for_db  # noqa: F401  (blocks until the DB accepts connections)
    from app.core.config import settings

    if os.getenv("SKIP_MIGRATIONS", "").lower() not in ("1", "true", "yes"):
        migrate(settings.DATABASE_URL)

    from app.seed import run as run_seed
    run_seed()
    serve()


if __name__ == "__main__":
    main()
