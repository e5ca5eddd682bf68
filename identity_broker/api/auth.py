"""Caller authentication dependencies: admin API key and identified browser session."""
import secrets
from typing import Optional

from fastapi import Depends, Header, Request

from identity_broker.api.deps import get_settings
from identity_broker.config import Settings
from identity_broker.errors import Unauthenticated
from identity_broker.session_binder import identified_customer_id


def require_admin_key(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Validate X-API-Key against ADMIN_API_KEY; no-op when no key is configured."""
    if not settings.admin_api_key:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.admin_api_key):
        raise Unauthenticated("Invalid API key", error="invalid_api_key")


def require_identified_customer(request: Request) -> str:
    """Customer id bound to the browser session by a Workspace login."""
    customer_id = identified_customer_id(request.session)
    if not customer_id:
        raise Unauthenticated("Not authenticated")
    return customer_id
