"""Customer store, the persistence boundary for customers and their credentials.

Every write is a single statement (merge-by-key or a fixed-column update by key),
so concurrent readers never see a half-written credential bundle. No token
validation happens here.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from identity_broker.credentials import AccountingCredentials, WorkspaceCredentials, utcnow
from identity_broker.errors import StorageError
from identity_broker.models import Customer
from identity_broker.models.customer import accounting_columns, workspace_columns

logger = logging.getLogger(__name__)


class CustomerStore:
    """SQLAlchemy-backed customer persistence; one short-lived session per call."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Customer store operation failed: %s", exc)
            raise StorageError("Customer store operation failed") from exc
        finally:
            db.close()

    def upsert(self, customer: Customer) -> Customer:
        """Insert or replace the record keyed by ``customer.id``; keeps an existing created_at."""
        now = utcnow()
        with self._session() as db:
            if customer.created_at is None:
                existing = db.get(Customer, customer.id)
                customer.created_at = existing.created_at if existing else now
            customer.updated_at = now
            merged = db.merge(customer)
            db.commit()
            return merged

    def get_by_id(self, customer_id: str) -> Optional[Customer]:
        with self._session() as db:
            return db.get(Customer, customer_id)

    def list_all(self) -> list[Customer]:
        """All customers, newest created first."""
        with self._session() as db:
            return list(db.scalars(select(Customer).order_by(Customer.created_at.desc())))

    def latest(self) -> Optional[Customer]:
        with self._session() as db:
            return db.scalars(
                select(Customer).order_by(Customer.created_at.desc()).limit(1)
            ).first()

    def count(self) -> int:
        with self._session() as db:
            return db.scalar(select(func.count()).select_from(Customer)) or 0

    def search_by_email(self, fragment: str) -> list[Customer]:
        """Case-insensitive substring match on email, newest first."""
        pattern = f"%{fragment.lower()}%"
        with self._session() as db:
            return list(
                db.scalars(
                    select(Customer)
                    .where(func.lower(Customer.email).like(pattern))
                    .order_by(Customer.created_at.desc())
                )
            )

    def _update(self, where, values: dict) -> int:
        values = {**values, "updated_at": utcnow()}
        with self._session() as db:
            result = db.execute(update(Customer).where(where).values(**values))
            db.commit()
            return result.rowcount

    def update_accounting_credentials(
        self, customer_id: str, bundle: Optional[AccountingCredentials]
    ) -> int:
        """Write (or, with ``None``, clear) the whole accounting bundle. Returns rows affected."""
        return self._update(Customer.id == customer_id, accounting_columns(bundle))

    def update_workspace_credentials(self, customer_id: str, bundle: WorkspaceCredentials) -> int:
        return self._update(Customer.id == customer_id, workspace_columns(bundle))

    def clear_workspace_credentials(self, customer_id: str) -> int:
        return self._update(Customer.id == customer_id, workspace_columns(None))

    def clear_accounting_credentials_for_company(self, company_id: str) -> int:
        """Clear the accounting bundle on every customer connected to ``company_id``."""
        return self._update(Customer.qb_company_id == company_id, accounting_columns(None))

    def delete(self, customer_id: str) -> int:
        """Hard delete. Returns 0 when nothing matched."""
        with self._session() as db:
            result = db.execute(delete(Customer).where(Customer.id == customer_id))
            db.commit()
            return result.rowcount
