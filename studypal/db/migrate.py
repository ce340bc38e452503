"""
Database migration runner for Alembic migrations.
"""
import logging
import os
from alembic.config import Config
from alembic import command
from sqlalchemy import create_engine, text

logger = logging.getLogger(__name__)

ADVISORY_LOCK_ID = 731902245


def run_migrations():
    """
    Run Alembic migrations to head revision.
    Uses a Postgres advisory lock so concurrent workers do not migrate twice.
    """
    from studypal.core import config as app_config

    if not app_config.DATABASE_URL:
        raise ValueError("DATABASE_URL is not set")

    logger.info("RUN_MIGRATIONS=1 -> running alembic upgrade head")

    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    alembic_cfg = Config(os.path.join(project_root, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(project_root, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", app_config.DATABASE_URL)

    engine = create_engine(app_config.DATABASE_URL, pool_pre_ping=True)
    lock_conn = None
    is_postgres = app_config.DATABASE_URL.startswith("postgresql")

    try:
        if is_postgres:
            # Keep the connection open to hold the lock
            lock_conn = engine.connect()
            try:
                lock_conn.execute(text(f"SELECT pg_advisory_lock({ADVISORY_LOCK_ID})"))
                lock_conn.commit()
                logger.info("Migration lock acquired")
            except Exception as lock_error:
                logger.warning(f"Could not acquire advisory lock: {lock_error}")
                lock_conn.close()
                lock_conn = None

        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception:
        logger.exception("Migration failed")
        raise
    finally:
        if lock_conn:
            try:
                lock_conn.execute(text(f"SELECT pg_advisory_unlock({ADVISORY_LOCK_ID})"))
                lock_conn.commit()
            except Exception as unlock_error:
                logger.warning(f"Could not release advisory lock: {unlock_error}")
            finally:
                lock_conn.close()
        engine.dispose()
