"""
Authorization flow controller for the Workspace and Accounting OAuth handshakes.

The customer identity is resolved at callback time, not when authorization
starts, because the standalone Accounting entry point has no identity to anchor
to. Callbacks never raise to the browser: every failure becomes an error code
on the result redirect, and nothing is written unless a complete credential
bundle is in hand.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

from identity_broker.config import Settings
from identity_broker.connectors.google import WORKSPACE_SCOPES, GoogleConnector
from identity_broker.connectors.quickbooks import QuickBooksConnector
from identity_broker.credentials import (
    AccountingCredentials,
    WorkspaceCredentials,
    expiry_from_token,
)
from identity_broker.errors import CustomerNotFound, Forbidden, StorageError, Unauthenticated
from identity_broker.models import Customer
from identity_broker.session_binder import (
    NoFlowState,
    PendingFor,
    Session,
    StandaloneAttempt,
    bind_identity,
    check_oauth_state,
    consume_flow_state,
    identified_customer_id,
    issue_oauth_state,
    mark_standalone,
    stash_pending,
)
from identity_broker.store import CustomerStore

logger = logging.getLogger(__name__)

RESULT_PATH = "/auth-result"

WORKSPACE = "workspace"
ACCOUNTING = "accounting"

AUTH_FAILED = "auth_failed"
SESSION_LOST = "session_lost"
TOKEN_SAVE_FAILED = "token_save_failed"


def new_customer_id() -> str:
    return str(uuid.uuid4())


def placeholder_email(company_id: str) -> str:
    """Synthetic, deterministic email for customers that only connected QuickBooks."""
    return f"qb-user-{company_id}@temp.local"


@dataclass(frozen=True)
class FlowOutcome:
    """Result of a callback, rendered as query parameters on the result page redirect."""

    provider: str
    customer_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def query(self) -> dict[str, str]:
        prefix = "workspace" if self.provider == WORKSPACE else "qb"
        if self.error:
            return {f"{prefix}_error": self.error}
        return {f"{prefix}_success": "1", "customer_id": self.customer_id}

    @property
    def redirect_url(self) -> str:
        return f"{RESULT_PATH}?{urlencode(self.query())}"


@dataclass(frozen=True)
class _Attach:
    customer_id: str


@dataclass(frozen=True)
class _CreatePlaceholder:
    pass


class AuthorizationFlow:
    """Runs both OAuth flows and reconciles their tokens onto customer identities."""

    def __init__(
        self,
        store: CustomerStore,
        google: GoogleConnector,
        quickbooks: QuickBooksConnector,
        settings: Settings,
    ):
        self.store = store
        self.google = google
        self.quickbooks = quickbooks
        self.settings = settings

    # Workspace

    def begin_workspace(self, session: Session) -> str:
        state = issue_oauth_state(session, WORKSPACE)
        return self.google.authorization_url(state)

    def complete_workspace(
        self,
        session: Session,
        code: Optional[str],
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> FlowOutcome:
        """Every successful consent mints a new customer; there is no merge by email."""
        state_ok = check_oauth_state(session, WORKSPACE, state)
        if error or not code:
            logger.warning("Google OAuth callback without code (error=%s)", error)
            return FlowOutcome(WORKSPACE, error=AUTH_FAILED)
        if not state_ok:
            logger.warning("Google OAuth callback state missing or mismatched")
            return FlowOutcome(WORKSPACE, error=AUTH_FAILED)

        try:
            token = self.google.exchange_code(code)
            profile = self.google.fetch_profile(token)
            bundle = self._workspace_bundle(token)
        except Exception as exc:
            logger.error("Google token exchange failed: %s", exc)
            return FlowOutcome(WORKSPACE, error=AUTH_FAILED)

        customer = Customer(
            id=new_customer_id(),
            email=profile.get("email"),
            name=profile.get("name"),
            picture=profile.get("picture"),
        )
        customer.set_workspace_credentials(bundle)
        try:
            self.store.upsert(customer)
        except StorageError as exc:
            logger.error("Saving Google tokens failed: %s", exc)
            return FlowOutcome(WORKSPACE, error=TOKEN_SAVE_FAILED)

        bind_identity(session, customer.id)
        logger.info("New customer with Workspace access: %s", customer.id)
        return FlowOutcome(WORKSPACE, customer_id=customer.id)

    def _workspace_bundle(
        self, token: dict[str, Any], previous: Optional[WorkspaceCredentials] = None
    ) -> WorkspaceCredentials:
        if token.get("scope"):
            scopes = frozenset(token["scope"].split())
        elif previous is not None:
            scopes = previous.granted_scopes
        else:
            scopes = frozenset(WORKSPACE_SCOPES)
        return WorkspaceCredentials(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token") or (previous.refresh_token if previous else None),
            granted_scopes=scopes,
            expires_at=expiry_from_token(token),
        )

    # Accounting

    def begin_accounting(self, session: Session, customer_id: Optional[str] = None) -> str:
        """Start QuickBooks consent for the logged-in customer, or for an explicit existing id."""
        target = identified_customer_id(session)
        if target is None and customer_id:
            if self.store.get_by_id(customer_id) is None:
                raise CustomerNotFound(
                    "Customer not found. Please authenticate first.",
                    auth_url=self.settings.workspace_auth_url(),
                )
            target = customer_id
        if target is None:
            raise Unauthenticated(
                "Log in with Google before connecting QuickBooks.",
                error="login_required",
                auth_url=self.settings.workspace_auth_url(),
            )
        stash_pending(session, target)
        state = issue_oauth_state(session, ACCOUNTING)
        return self.quickbooks.authorization_url(state)

    def begin_accounting_standalone(self, session: Session) -> str:
        attempt = mark_standalone(session)
        state = issue_oauth_state(session, ACCOUNTING)
        logger.info("Starting standalone QuickBooks authorization (attempt %s)", attempt)
        return self.quickbooks.authorization_url(state)

    def _resolve_target(self, session: Session, flow_state):
        """Pick the customer to attach to, in priority order; ``None`` when no context exists."""
        identified = identified_customer_id(session)
        if identified:
            return _Attach(identified)
        if isinstance(flow_state, PendingFor):
            return _Attach(flow_state.customer_id)
        if isinstance(flow_state, StandaloneAttempt):
            return _CreatePlaceholder()
        if isinstance(flow_state, NoFlowState):
            return None
        raise TypeError(f"Unhandled flow state: {flow_state!r}")

    def complete_accounting(
        self,
        session: Session,
        code: Optional[str],
        realm_id: Optional[str],
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> FlowOutcome:
        # Markers and state are single use, whatever the outcome
        flow_state = consume_flow_state(session)
        state_ok = check_oauth_state(session, ACCOUNTING, state)
        if error:
            logger.warning("QuickBooks OAuth error: %s", error)
            return FlowOutcome(ACCOUNTING, error=AUTH_FAILED)
        if not code or not realm_id:
            logger.warning("QuickBooks OAuth callback without code or realmId")
            return FlowOutcome(ACCOUNTING, error=AUTH_FAILED)

        target = self._resolve_target(session, flow_state)
        if target is None:
            logger.warning("QuickBooks callback with no session context")
            return FlowOutcome(ACCOUNTING, error=SESSION_LOST)
        # Only the browser that ran the begin step may attach tokens
        if not state_ok:
            logger.warning("QuickBooks OAuth callback state missing or mismatched")
            return FlowOutcome(ACCOUNTING, error=AUTH_FAILED)

        try:
            token = self.quickbooks.exchange_code(code)
            bundle = AccountingCredentials(
                access_token=token["access_token"],
                refresh_token=token.get("refresh_token"),
                company_id=realm_id,
                expires_at=expiry_from_token(token),
                api_base_url=self.quickbooks.api_base_url,
            )
        except Exception as exc:
            logger.error("QuickBooks token exchange failed: %s", exc)
            return FlowOutcome(ACCOUNTING, error=TOKEN_SAVE_FAILED)

        try:
            if isinstance(target, _CreatePlaceholder):
                customer_id = self._create_placeholder(bundle)
            else:
                customer_id = target.customer_id
                if self.store.update_accounting_credentials(customer_id, bundle) == 0:
                    logger.warning("QuickBooks callback for vanished customer %s", customer_id)
                    return FlowOutcome(ACCOUNTING, error=SESSION_LOST)
                logger.info("Attached QuickBooks company %s to customer %s", realm_id, customer_id)
        except StorageError as exc:
            logger.error("Saving QuickBooks tokens failed: %s", exc)
            return FlowOutcome(ACCOUNTING, error=TOKEN_SAVE_FAILED)

        return FlowOutcome(ACCOUNTING, customer_id=customer_id)

    def _create_placeholder(self, bundle: AccountingCredentials) -> str:
        customer = Customer(
            id=new_customer_id(),
            email=placeholder_email(bundle.company_id),
            name=f"QuickBooks User {bundle.company_id}",
            picture=None,
        )
        customer.set_accounting_credentials(bundle)
        self.store.upsert(customer)
        logger.info("Created QuickBooks-only customer %s", customer.id)
        return customer.id

    # Disconnect

    def disconnect_workspace(self, customer_id: str) -> None:
        self.store.clear_workspace_credentials(customer_id)
        logger.info("Google disconnected for customer %s", customer_id)

    def disconnect_accounting(self, customer_id: str) -> None:
        self.store.update_accounting_credentials(customer_id, None)
        logger.info("QuickBooks disconnected for customer %s", customer_id)

    def disconnect_accounting_for_company(self, company_id: str) -> int:
        cleared = self.store.clear_accounting_credentials_for_company(company_id)
        logger.info("QuickBooks company %s disconnected (%d customers)", company_id, cleared)
        return cleared

    # Refresh

    def _customer(self, customer_id: str, auth_url: str) -> Customer:
        customer = self.store.get_by_id(customer_id)
        if customer is None:
            raise CustomerNotFound("Customer not found. Please authenticate first.", auth_url=auth_url)
        return customer

    def refresh_workspace(self, customer_id: str) -> WorkspaceCredentials:
        """Exchange the stored Google refresh token and rewrite the whole bundle."""
        auth_url = self.settings.workspace_auth_url()
        current = self._customer(customer_id, auth_url).workspace_credentials
        if current is None:
            raise Forbidden(
                "No access token found. Please re-authenticate.", error="no_token", auth_url=auth_url
            )
        try:
            bundle = self._workspace_bundle(self.google.refresh(current.refresh_token), previous=current)
        except Exception as exc:
            logger.warning("Google token refresh failed for %s: %s", customer_id, exc)
            raise Forbidden(
                "Token refresh failed. Please re-authenticate.", error="refresh_failed", auth_url=auth_url
            ) from exc
        if self.store.update_workspace_credentials(customer_id, bundle) == 0:
            raise CustomerNotFound("Customer not found. Please authenticate first.", auth_url=auth_url)
        logger.info("Refreshed Google token for customer %s", customer_id)
        return bundle

    def refresh_accounting(self, customer_id: str) -> AccountingCredentials:
        """Exchange the stored QuickBooks refresh token and rewrite the whole bundle."""
        auth_url = self.settings.accounting_auth_url()
        current = self._customer(customer_id, auth_url).accounting_credentials
        if current is None:
            raise Forbidden(
                "QuickBooks not connected. Please authorize first.",
                error="quickbooks_not_connected",
                auth_url=auth_url,
            )
        try:
            token = self.quickbooks.refresh(current.refresh_token)
            bundle = AccountingCredentials(
                access_token=token["access_token"],
                refresh_token=token.get("refresh_token") or current.refresh_token,
                company_id=current.company_id,
                expires_at=expiry_from_token(token),
                api_base_url=current.api_base_url or self.quickbooks.api_base_url,
            )
        except Exception as exc:
            logger.warning("QuickBooks token refresh failed for %s: %s", customer_id, exc)
            raise Forbidden(
                "Token refresh failed. Please re-authorize QuickBooks.",
                error="refresh_failed",
                auth_url=auth_url,
            ) from exc
        if self.store.update_accounting_credentials(customer_id, bundle) == 0:
            raise CustomerNotFound("Customer not found. Please authenticate first.", auth_url=auth_url)
        logger.info("Refreshed QuickBooks token for customer %s", customer_id)
        return bundle
