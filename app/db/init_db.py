"""Create tables and bring older SQLite/PostgreSQL schemas up to date."""
import logging
from sqlalchemy import inspect, text
from sqlalchemy.engine import Inspector
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from app.db.database import engine, SessionLocal, Base
from app.db import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

# (table, column, DDL type) added to tables created before the column existed
COLUMN_MIGRATIONS = [
    ("users", "current_difficulty", "TEXT NOT NULL DEFAULT 'beginner'"),
]

# (table, index, columns)
INDEX_MIGRATIONS = [
    ("activity_events", "idx_activity_user_timestamp", "user_id, timestamp"),
    ("quiz_attempts", "idx_quiz_user_date", "user_id, quiz_date"),
]


def column_names(inspector: Inspector, table_name: str) -> set:
    return {col["name"] for col in inspector.get_columns(table_name)}


def index_names(inspector: Inspector, table_name: str) -> set:
    return {idx["name"] for idx in inspector.get_indexes(table_name)}


def apply_schema_migrations(db: Session) -> list:
    """
    Add missing columns and indexes. Idempotent.

    Returns:
        Descriptions of the changes applied (empty when up to date)
    """
    inspector = inspect(db.get_bind())
    tables = set(inspector.get_table_names())
    applied = []

    for table_name, column, ddl in COLUMN_MIGRATIONS:
        if table_name not in tables or column in column_names(inspector, table_name):
            continue
        try:
            db.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column} {ddl}"))
            applied.append(f"Added column {table_name}.{column}")
        except OperationalError as e:
            logger.warning(f"Could not add column {table_name}.{column}: {e}")

    for table_name, index, columns in INDEX_MIGRATIONS:
        if table_name not in tables or index in index_names(inspector, table_name):
            continue
        try:
            db.execute(text(f"CREATE INDEX IF NOT EXISTS {index} ON {table_name} ({columns})"))
            applied.append(f"Created index {index}")
        except OperationalError as e:
            logger.warning(f"Could not create index {index}: {e}")

    if not applied:
        logger.info("Schema is up to date")
        return applied

    try:
        db.commit()
    except OperationalError:
        db.rollback()
        logger.error("Committing schema migrations failed", exc_info=True)
        raise

    for change in applied:
        logger.info(f"Migration applied: {change}")
    return applied


def init_db(bind=None) -> None:
    """
    Create missing tables, then apply column and index migrations.

    Args:
        bind: Engine to initialize. Defaults to the application engine.
    """
    bind = bind if bind is not None else engine
    Base.metadata.create_all(bind=bind)

    db = SessionLocal(bind=bind)
    try:
        apply_schema_migrations(db)
    finally:
        db.close()
    logger.info("Database initialized")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
