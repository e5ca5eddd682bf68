"""Database setup, session factories and schema evolution."""
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


# Columns added to customers tables created before the accounting integration existed
ACCOUNTING_COLUMNS = [
    ("qb_access_token", "TEXT"),
    ("qb_refresh_token", "TEXT"),
    ("qb_company_id", "VARCHAR(64)"),
    ("qb_token_expiry", "TIMESTAMP"),
    ("qb_base_url", "VARCHAR(255)"),
]


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite needs check_same_thread=False under the threadpool."""
    connect_args = {} if "sqlite" not in database_url else {"check_same_thread": False}
    return create_engine(database_url, echo=False, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker:
    # Store methods hand ORM objects back after the session closes
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


def _is_duplicate_column(exc: Exception) -> bool:
    message = str(exc).lower()
    return "duplicate column" in message or "already exists" in message


def add_accounting_columns(bind: Engine) -> list[str]:
    """Add accounting columns to an existing customers table; returns the columns added.

    Each ALTER runs in its own transaction so a "column already exists" failure
    (non-fatal) does not abort the remaining statements on PostgreSQL.
    """
    added = []
    for name, ddl_type in ACCOUNTING_COLUMNS:
        try:
            with bind.begin() as conn:
                conn.execute(text(f"ALTER TABLE customers ADD COLUMN {name} {ddl_type}"))
            added.append(name)
        except (OperationalError, ProgrammingError) as exc:
            if not _is_duplicate_column(exc):
                raise
            logger.debug("Column customers.%s already exists", name)
    if added:
        logger.info("Added accounting columns to customers table: %s", ", ".join(added))
    return added


def init_db(bind: Engine) -> None:
    """Create all tables, then bring a pre-existing customers table up to date."""
    import identity_broker.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=bind)
    add_accounting_columns(bind)
