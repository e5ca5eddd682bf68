"""
Pydantic schemas for the JSON API.

Responses use camelCase on the wire; the workflow callers read ``accessToken``,
``companyId`` and friends. Query inputs carry explicit max lengths.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Shared max lengths for query/path inputs
MAX_LEN_CUSTOMER_ID = 64
MAX_LEN_EMAIL = 320
MAX_LEN_REALM_ID = 64
MAX_LEN_OAUTH_CODE = 512
MAX_LEN_STATE = 128
MAX_LEN_ERROR = 128


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CustomerTokenOut(CamelModel):
    """Validated Workspace credentials handed to a workflow."""
    id: str
    email: Optional[str]
    name: Optional[str]
    access_token: str
    refresh_token: Optional[str]
    scopes: list[str]
    expires_in: Optional[int]
    created_at: Optional[datetime]
    has_google_auth: bool = True


class WorkspaceRefreshOut(CamelModel):
    id: str
    access_token: str
    scopes: list[str]
    token_expiry: Optional[datetime]


class AccountingInfo(CamelModel):
    connected: bool
    company_id: Optional[str] = None
    environment: Optional[str] = None


class CustomerSummary(CamelModel):
    """Admin listing row; never includes tokens."""
    id: str
    email: Optional[str]
    name: Optional[str]
    has_google_auth: bool
    has_quickbooks_auth: bool
    created_at: Optional[datetime]
    token_expiry: Optional[datetime]
    quickbooks_info: AccountingInfo


class CustomerCount(CamelModel):
    count: int


class AccountingStatusOut(CamelModel):
    connected: bool
    company_id: Optional[str] = None
    api_base_url: Optional[str] = None
    environment: Optional[str] = None
    token_valid: bool = False
    token_expiry: Optional[datetime] = None
    message: Optional[str] = None


class AccountingTokensOut(CamelModel):
    access_token: str
    refresh_token: Optional[str]
    company_id: str
    api_base_url: Optional[str]
    environment: str
    token_expiry: Optional[datetime]


class DisconnectResult(CamelModel):
    success: bool = True
    message: str


class DeleteResult(CamelModel):
    success: bool = True
    deleted: int
    message: str
    customer_email: str


class AuthResultOut(CamelModel):
    """JSON stand-in for the result page the OAuth callbacks redirect to."""
    status: str
    provider: Optional[str] = None
    customer_id: Optional[str] = None
    error: Optional[str] = None
    message: str
    restart_url: Optional[str] = None
