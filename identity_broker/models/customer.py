"""Customer model: one identity holding Workspace and Accounting credentials."""
from typing import Optional

from sqlalchemy import Column, String, Text, DateTime

from identity_broker.credentials import AccountingCredentials, WorkspaceCredentials, utcnow
from identity_broker.database import Base


class Customer(Base):
    """End customer whose provider tokens are brokered to automation workflows."""

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True)  # uuid4, never reused
    # Not unique: each Workspace consent mints a new customer, even for the same email
    email = Column(String(320), index=True)
    name = Column(String(255))
    picture = Column(Text)

    # Workspace (Google)
    google_access_token = Column(Text)
    google_refresh_token = Column(Text)
    scopes = Column(Text)  # space separated
    token_expiry = Column(DateTime(timezone=True))

    # Accounting (QuickBooks)
    qb_access_token = Column(Text)
    qb_refresh_token = Column(Text)
    qb_company_id = Column(String(64), index=True)  # QBO realmId
    qb_token_expiry = Column(DateTime(timezone=True))
    qb_base_url = Column(String(255))

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def scope_list(self) -> list[str]:
        return self.scopes.split() if self.scopes else []

    @property
    def workspace_credentials(self) -> Optional[WorkspaceCredentials]:
        if not self.google_access_token:
            return None
        return WorkspaceCredentials(
            access_token=self.google_access_token,
            refresh_token=self.google_refresh_token,
            granted_scopes=frozenset(self.scope_list),
            expires_at=self.token_expiry,
        )

    @property
    def accounting_credentials(self) -> Optional[AccountingCredentials]:
        if not (self.qb_access_token and self.qb_company_id):
            return None
        return AccountingCredentials(
            access_token=self.qb_access_token,
            refresh_token=self.qb_refresh_token,
            company_id=self.qb_company_id,
            expires_at=self.qb_token_expiry,
            api_base_url=self.qb_base_url,
        )

    @property
    def has_workspace_auth(self) -> bool:
        return bool(self.google_access_token)

    @property
    def has_accounting_auth(self) -> bool:
        return bool(self.qb_access_token and self.qb_company_id)

    def set_workspace_credentials(self, bundle: Optional[WorkspaceCredentials]) -> None:
        for column, value in workspace_columns(bundle).items():
            setattr(self, column, value)

    def set_accounting_credentials(self, bundle: Optional[AccountingCredentials]) -> None:
        for column, value in accounting_columns(bundle).items():
            setattr(self, column, value)


def workspace_columns(bundle: Optional[WorkspaceCredentials]) -> dict:
    """Column values for a whole Workspace bundle; ``None`` clears every column."""
    return {
        "google_access_token": bundle.access_token if bundle else None,
        "google_refresh_token": bundle.refresh_token if bundle else None,
        "scopes": bundle.scope_string if bundle else None,
        "token_expiry": bundle.expires_at if bundle else None,
    }


def accounting_columns(bundle: Optional[AccountingCredentials]) -> dict:
    """Column values for a whole Accounting bundle; ``None`` clears every column."""
    return {
        "qb_access_token": bundle.access_token if bundle else None,
        "qb_refresh_token": bundle.refresh_token if bundle else None,
        "qb_company_id": bundle.company_id if bundle else None,
        "qb_token_expiry": bundle.expires_at if bundle else None,
        "qb_base_url": bundle.api_base_url if bundle else None,
    }
