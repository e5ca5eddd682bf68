"""Browser-facing OAuth routes: begin, callback, disconnect, and the result endpoint."""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from identity_broker.api.auth import require_identified_customer
from identity_broker.api.deps import get_flow
from identity_broker.errors import StorageError, Unauthenticated
from identity_broker.flow import RESULT_PATH, AuthorizationFlow
from identity_broker.schemas import (
    MAX_LEN_CUSTOMER_ID,
    MAX_LEN_ERROR,
    MAX_LEN_OAUTH_CODE,
    MAX_LEN_REALM_ID,
    MAX_LEN_STATE,
    AuthResultOut,
    DisconnectResult,
)
from identity_broker.session_binder import forget_identity, identified_customer_id

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    "auth_failed": "{provider} authorization failed. Please try again.",
    "session_lost": "Session expired. Please try connecting {provider} again.",
    "token_save_failed": "Failed to save {provider} tokens. Please try again.",
    "login_required": "Please log in with Google before connecting QuickBooks.",
    "disconnect_failed": "Failed to disconnect {provider}. Please try again.",
}


def _result_redirect(params: dict[str, str], status_code: int = 307) -> RedirectResponse:
    return RedirectResponse(url=f"{RESULT_PATH}?{urlencode(params)}", status_code=status_code)


# Workspace (Google)


@router.get("/auth/workspace")
def workspace_authorize(request: Request, flow: AuthorizationFlow = Depends(get_flow)):
    """Redirect to Google consent (offline access, forced consent)."""
    return RedirectResponse(url=flow.begin_workspace(request.session))


@router.get("/auth/workspace/callback")
def workspace_callback(
    request: Request,
    code: Optional[str] = Query(None, max_length=MAX_LEN_OAUTH_CODE),
    state: Optional[str] = Query(None, max_length=MAX_LEN_STATE),
    error: Optional[str] = Query(None, max_length=MAX_LEN_ERROR),
    flow: AuthorizationFlow = Depends(get_flow),
):
    """Handle Google's redirect: mint a customer, store tokens, redirect to the result page."""
    outcome = flow.complete_workspace(request.session, code, state=state, error=error)
    return RedirectResponse(url=outcome.redirect_url)


@router.post("/auth/workspace/disconnect", response_model=DisconnectResult)
def workspace_disconnect(
    customer_id: str = Depends(require_identified_customer),
    flow: AuthorizationFlow = Depends(get_flow),
):
    flow.disconnect_workspace(customer_id)
    return DisconnectResult(message="Google disconnected")


# Accounting (QuickBooks)


@router.get("/auth/accounting")
def accounting_authorize(
    request: Request,
    customer_id: Optional[str] = Query(None, max_length=MAX_LEN_CUSTOMER_ID),
    flow: AuthorizationFlow = Depends(get_flow),
):
    """Redirect to QuickBooks consent for the logged-in (or explicitly named) customer."""
    try:
        url = flow.begin_accounting(request.session, customer_id)
    except Unauthenticated:
        return _result_redirect({"qb_error": "login_required"})
    return RedirectResponse(url=url)


@router.get("/auth/accounting/standalone")
def accounting_authorize_standalone(request: Request, flow: AuthorizationFlow = Depends(get_flow)):
    """Redirect to QuickBooks consent with no prior identity; the callback creates a customer."""
    return RedirectResponse(url=flow.begin_accounting_standalone(request.session))


@router.get("/auth/accounting/callback")
def accounting_callback(
    request: Request,
    code: Optional[str] = Query(None, max_length=MAX_LEN_OAUTH_CODE),
    state: Optional[str] = Query(None, max_length=MAX_LEN_STATE),
    realmId: Optional[str] = Query(None, max_length=MAX_LEN_REALM_ID),
    error: Optional[str] = Query(None, max_length=MAX_LEN_ERROR),
    flow: AuthorizationFlow = Depends(get_flow),
):
    """Reconcile QuickBooks tokens onto a customer and redirect to the result page."""
    outcome = flow.complete_accounting(request.session, code, realmId, state=state, error=error)
    return RedirectResponse(url=outcome.redirect_url)


def _disconnect_company(flow: AuthorizationFlow, company_id: Optional[str], status_code: int):
    """Company-keyed disconnect used by Intuit's disconnect link; no session required."""
    if not company_id:
        return _result_redirect({"qb_error": "disconnect_failed"}, status_code)
    try:
        flow.disconnect_accounting_for_company(company_id)
    except StorageError as exc:
        logger.error("QuickBooks disconnect failed for company %s: %s", company_id, exc)
        return _result_redirect({"qb_error": "disconnect_failed"}, status_code)
    return _result_redirect({"qb_disconnected": "1"}, status_code)


@router.post("/auth/accounting/disconnect")
def accounting_disconnect(
    request: Request,
    companyId: Optional[str] = Query(None, max_length=MAX_LEN_REALM_ID),
    realmId: Optional[str] = Query(None, max_length=MAX_LEN_REALM_ID),
    flow: AuthorizationFlow = Depends(get_flow),
):
    """Disconnect QuickBooks for the logged-in customer, or for a company when one is named."""
    company_id = companyId or realmId
    if company_id:
        return _disconnect_company(flow, company_id, status_code=303)
    customer_id = require_identified_customer(request)
    flow.disconnect_accounting(customer_id)
    return DisconnectResult(message="QuickBooks disconnected")


@router.get("/auth/accounting/disconnect")
def accounting_disconnect_by_company(
    companyId: Optional[str] = Query(None, max_length=MAX_LEN_REALM_ID),
    realmId: Optional[str] = Query(None, max_length=MAX_LEN_REALM_ID),
    flow: AuthorizationFlow = Depends(get_flow),
):
    return _disconnect_company(flow, companyId or realmId, status_code=307)


# Result / session


@router.get("/auth-result", response_model=AuthResultOut)
def auth_result(
    request: Request,
    workspace_success: Optional[str] = None,
    workspace_error: Optional[str] = Query(None, max_length=MAX_LEN_ERROR),
    qb_success: Optional[str] = None,
    qb_error: Optional[str] = Query(None, max_length=MAX_LEN_ERROR),
    qb_disconnected: Optional[str] = None,
    customer_id: Optional[str] = Query(None, max_length=MAX_LEN_CUSTOMER_ID),
):
    """Describe the outcome of a flow, with a link to start over on failure."""
    if workspace_error:
        return AuthResultOut(
            status="error",
            provider="workspace",
            error=workspace_error,
            message=ERROR_MESSAGES.get(workspace_error, "Google authorization failed.").format(provider="Google"),
            restart_url="/auth/workspace",
        )
    if qb_error:
        if qb_error == "login_required":
            restart = "/auth/workspace"
        elif identified_customer_id(request.session):
            restart = "/auth/accounting"
        else:
            restart = "/auth/accounting/standalone"
        return AuthResultOut(
            status="error",
            provider="accounting",
            error=qb_error,
            message=ERROR_MESSAGES.get(qb_error, "QuickBooks authorization failed.").format(provider="QuickBooks"),
            restart_url=restart,
        )
    if workspace_success:
        return AuthResultOut(
            status="success", provider="workspace", customer_id=customer_id, message="Google connected successfully."
        )
    if qb_success:
        return AuthResultOut(
            status="success", provider="accounting", customer_id=customer_id, message="QuickBooks connected successfully."
        )
    if qb_disconnected:
        return AuthResultOut(status="success", provider="accounting", message="QuickBooks disconnected.")
    return AuthResultOut(status="unknown", message="No authorization result.", restart_url="/auth/workspace")


@router.get("/logout")
def logout(request: Request):
    forget_identity(request.session)
    return {"success": True}
