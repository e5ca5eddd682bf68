"""Administrative mutations."""
import logging

from fastapi import APIRouter, Depends, Path

from identity_broker.api.auth import require_admin_key
from identity_broker.api.deps import get_store
from identity_broker.errors import StorageError
from identity_broker.schemas import MAX_LEN_CUSTOMER_ID, DeleteResult
from identity_broker.store import CustomerStore

router = APIRouter(dependencies=[Depends(require_admin_key)])
logger = logging.getLogger(__name__)


@router.delete("/customer/{customer_id}", response_model=DeleteResult)
def delete_customer(
    customer_id: str = Path(..., min_length=1, max_length=MAX_LEN_CUSTOMER_ID),
    store: CustomerStore = Depends(get_store),
):
    """Hard delete. Deleting an unknown id succeeds with ``deleted: 0``."""
    # Email is read only for the audit log line; a failed read must not block the delete
    try:
        customer = store.get_by_id(customer_id)
    except StorageError as exc:
        logger.warning("Could not read customer %s before delete: %s", customer_id, exc)
        customer = None
    email = customer.email if customer and customer.email else None

    deleted = store.delete(customer_id)
    logger.info("Customer deleted: %s (%s), rows=%d", customer_id, email or "unknown email", deleted)
    return DeleteResult(
        deleted=deleted,
        message="Customer deleted successfully" if deleted else "No customer with that id",
        customer_email=email or "Unknown",
    )
