"""Token lookup API used by workflow callers, plus admin listing routes."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from identity_broker.api.auth import require_admin_key
from identity_broker.api.deps import (
    get_accounting_validator,
    get_flow,
    get_settings,
    get_store,
    get_workspace_validator,
)
from identity_broker.config import Settings
from identity_broker.connectors.google import WORKSPACE_SCOPES
from identity_broker.errors import CustomerNotFound, Forbidden
from identity_broker.flow import AuthorizationFlow
from identity_broker.models import Customer
from identity_broker.schemas import (
    MAX_LEN_CUSTOMER_ID,
    MAX_LEN_EMAIL,
    AccountingInfo,
    AccountingStatusOut,
    AccountingTokensOut,
    CustomerCount,
    CustomerSummary,
    CustomerTokenOut,
    WorkspaceRefreshOut,
)
from identity_broker.store import CustomerStore
from identity_broker.validators import (
    AccountingCredentialValidator,
    WorkspaceTokenValidator,
    has_sufficient_scope,
)

router = APIRouter()
logger = logging.getLogger(__name__)

CustomerIdPath = Path(..., min_length=1, max_length=MAX_LEN_CUSTOMER_ID, description="Customer ID")


def _load_customer(store: CustomerStore, customer_id: str, auth_url: str) -> Customer:
    customer = store.get_by_id(customer_id)
    if customer is None:
        logger.info("Customer not found: %s", customer_id)
        raise CustomerNotFound("Customer not found. Please authenticate first.", auth_url=auth_url)
    return customer


def _summary(customer: Customer, settings: Settings) -> CustomerSummary:
    connected = customer.has_accounting_auth
    return CustomerSummary(
        id=customer.id,
        email=customer.email,
        name=customer.name,
        has_google_auth=customer.has_workspace_auth,
        has_quickbooks_auth=connected,
        created_at=customer.created_at,
        token_expiry=customer.token_expiry,
        quickbooks_info=AccountingInfo(
            connected=connected,
            company_id=customer.qb_company_id,
            environment=settings.qbo_environment if customer.qb_access_token else None,
        ),
    )


@router.get("/customer/{customer_id}", response_model=CustomerTokenOut)
def get_customer(
    customer_id: str = CustomerIdPath,
    store: CustomerStore = Depends(get_store),
    validator: WorkspaceTokenValidator = Depends(get_workspace_validator),
    settings: Settings = Depends(get_settings),
):
    """Return the customer's Workspace tokens after live validation and the scope gate."""
    auth_url = settings.workspace_auth_url()
    customer = _load_customer(store, customer_id, auth_url)

    credentials = customer.workspace_credentials
    if credentials is None:
        raise Forbidden(
            "No access token found. Please re-authenticate.", error="no_token", auth_url=auth_url
        )

    validation = validator.validate(credentials)
    if not validation.valid:
        logger.info("Workspace token invalid for customer %s", customer_id)
        raise Forbidden(
            "Access token is invalid or expired. Please re-authenticate.",
            error="invalid_token",
            auth_url=auth_url,
        )

    if not has_sufficient_scope(validation.scopes):
        raise Forbidden(
            "Token lacks required Google Sheets permissions. Please re-authenticate.",
            error="insufficient_scope",
            auth_url=auth_url,
            extra={
                "requiredScopes": WORKSPACE_SCOPES,
                "currentScopes": sorted(validation.scopes),
            },
        )

    return CustomerTokenOut(
        id=customer.id,
        email=customer.email,
        name=customer.name,
        access_token=credentials.access_token,
        refresh_token=credentials.refresh_token,
        scopes=sorted(validation.scopes),
        expires_in=validation.expires_in,
        created_at=customer.created_at,
    )


@router.post("/customer/{customer_id}/refresh", response_model=WorkspaceRefreshOut)
def refresh_workspace_token(
    customer_id: str = CustomerIdPath,
    flow: AuthorizationFlow = Depends(get_flow),
):
    """Refresh the Workspace access token with the stored refresh token."""
    bundle = flow.refresh_workspace(customer_id)
    return WorkspaceRefreshOut(
        id=customer_id,
        access_token=bundle.access_token,
        scopes=sorted(bundle.granted_scopes),
        token_expiry=bundle.expires_at,
    )


@router.get("/customer/{customer_id}/accounting", response_model=AccountingStatusOut)
def get_accounting_status(
    customer_id: str = CustomerIdPath,
    store: CustomerStore = Depends(get_store),
    validator: AccountingCredentialValidator = Depends(get_accounting_validator),
    settings: Settings = Depends(get_settings),
):
    """Connection status; a missing connection is ``connected: false``, not an error."""
    customer = _load_customer(store, customer_id, settings.accounting_auth_url())
    if not customer.qb_access_token:
        return AccountingStatusOut(connected=False, message="QuickBooks not connected")

    validation = validator.validate(customer.accounting_credentials)
    return AccountingStatusOut(
        connected=validation.valid,
        company_id=customer.qb_company_id,
        api_base_url=customer.qb_base_url,
        environment=settings.qbo_environment,
        token_valid=validation.valid,
        token_expiry=customer.qb_token_expiry,
    )


@router.get("/customer/{customer_id}/accounting/tokens", response_model=AccountingTokensOut)
def get_accounting_tokens(
    customer_id: str = CustomerIdPath,
    store: CustomerStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Raw QuickBooks credential bundle for a workflow."""
    auth_url = settings.accounting_auth_url()
    credentials = _load_customer(store, customer_id, auth_url).accounting_credentials
    if credentials is None:
        raise Forbidden(
            "QuickBooks not connected. Please authorize first.",
            error="quickbooks_not_connected",
            auth_url=auth_url,
        )
    return AccountingTokensOut(
        access_token=credentials.access_token,
        refresh_token=credentials.refresh_token,
        company_id=credentials.company_id,
        api_base_url=credentials.api_base_url,
        environment=settings.qbo_environment,
        token_expiry=credentials.expires_at,
    )


@router.post("/customer/{customer_id}/accounting/refresh", response_model=AccountingTokensOut)
def refresh_accounting_tokens(
    customer_id: str = CustomerIdPath,
    flow: AuthorizationFlow = Depends(get_flow),
    settings: Settings = Depends(get_settings),
):
    """Refresh the QuickBooks access token; the whole bundle is rewritten."""
    bundle = flow.refresh_accounting(customer_id)
    return AccountingTokensOut(
        access_token=bundle.access_token,
        refresh_token=bundle.refresh_token,
        company_id=bundle.company_id,
        api_base_url=bundle.api_base_url,
        environment=settings.qbo_environment,
        token_expiry=bundle.expires_at,
    )


@router.get("/customers", response_model=list[CustomerSummary], dependencies=[Depends(require_admin_key)])
def list_customers(
    store: CustomerStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """All customers, newest first, without tokens."""
    return [_summary(c, settings) for c in store.list_all()]


@router.get("/customers/latest", response_model=CustomerSummary, dependencies=[Depends(require_admin_key)])
def latest_customer(
    store: CustomerStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    customer = store.latest()
    if customer is None:
        raise CustomerNotFound("No customers found")
    return _summary(customer, settings)


@router.get("/customers/count", response_model=CustomerCount, dependencies=[Depends(require_admin_key)])
def count_customers(store: CustomerStore = Depends(get_store)):
    return CustomerCount(count=store.count())


@router.get("/customers/search", response_model=list[CustomerSummary], dependencies=[Depends(require_admin_key)])
def search_customers(
    email: str = Query("", max_length=MAX_LEN_EMAIL),
    store: CustomerStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Case-insensitive substring search on email."""
    if not email.strip():
        raise HTTPException(400, "Email parameter required")
    return [_summary(c, settings) for c in store.search_by_email(email.strip())]
