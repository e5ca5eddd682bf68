"""Provider credential bundles, written and cleared as a whole."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expiry_from_token(token: dict[str, Any], default_lifetime: int = 3600) -> datetime:
    """Absolute expiry for an OAuth token response (authlib sets ``expires_at``)."""
    if token.get("expires_at"):
        return datetime.fromtimestamp(int(token["expires_at"]), tz=timezone.utc)
    return utcnow() + timedelta(seconds=int(token.get("expires_in") or default_lifetime))


@dataclass(frozen=True)
class WorkspaceCredentials:
    access_token: str
    refresh_token: Optional[str]
    granted_scopes: frozenset[str] = field(default_factory=frozenset)
    expires_at: Optional[datetime] = None

    @property
    def scope_string(self) -> str:
        return " ".join(sorted(self.granted_scopes))


@dataclass(frozen=True)
class AccountingCredentials:
    access_token: str
    refresh_token: Optional[str]
    company_id: str
    expires_at: Optional[datetime]
    api_base_url: str
