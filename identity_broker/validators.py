"""
Credential validators. Decide whether stored provider credentials are usable.

Workspace tokens are checked live against Google's tokeninfo endpoint.
Accounting credentials only get a presence check; the QuickBooks data calls
made by the workflows surface real token problems themselves.

A failed validation is a normal result (``valid=False``), never an exception.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

import requests

from identity_broker.connectors.google import TOKENINFO_URL
from identity_broker.credentials import AccountingCredentials, WorkspaceCredentials

logger = logging.getLogger(__name__)

# Any one of these is enough for the downstream workflows
REQUIRED_CORE_SCOPES = frozenset({
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/drive",
})
READONLY_FALLBACK_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    status: int = 200
    expires_in: Optional[int] = None
    scopes: frozenset[str] = field(default_factory=frozenset)


def has_sufficient_scope(granted: Iterable[str]) -> bool:
    """True if any core scope, or the read-only sheets fallback, was granted."""
    granted = set(granted)
    return bool(granted & REQUIRED_CORE_SCOPES) or READONLY_FALLBACK_SCOPE in granted


class CredentialValidator(ABC):
    """Checks one provider's credential bundle."""

    @abstractmethod
    def validate(self, credentials) -> ValidationResult:
        ...


class WorkspaceTokenValidator(CredentialValidator):
    """Introspects a Google access token; unreachable or non-2xx means invalid."""

    def __init__(self, timeout: float = 10.0, tokeninfo_url: str = TOKENINFO_URL):
        self.timeout = timeout
        self.tokeninfo_url = tokeninfo_url

    def validate(self, credentials: Optional[WorkspaceCredentials]) -> ValidationResult:
        if credentials is None or not credentials.access_token:
            return ValidationResult(valid=False, status=401)
        return self.validate_token(credentials.access_token)

    def validate_token(self, access_token: str) -> ValidationResult:
        try:
            r = requests.get(
                self.tokeninfo_url,
                params={"access_token": access_token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Token introspection unreachable: %s", exc.__class__.__name__)
            return ValidationResult(valid=False, status=503)

        if not 200 <= r.status_code < 300:
            logger.info("Token introspection rejected token: HTTP %s", r.status_code)
            return ValidationResult(valid=False, status=r.status_code)

        try:
            data = r.json()
            expires_in = int(data["expires_in"]) if data.get("expires_in") is not None else None
            scope = data.get("scope") or ""
            if not isinstance(scope, str):
                raise TypeError(f"scope is {type(scope).__name__}, expected str")
            scopes = frozenset(scope.split())
        except (ValueError, TypeError, AttributeError):
            logger.warning("Token introspection returned a malformed body")
            return ValidationResult(valid=False, status=502)

        return ValidationResult(valid=True, status=r.status_code, expires_in=expires_in, scopes=scopes)


class AccountingCredentialValidator(CredentialValidator):
    """Presence check only: an access token and a company id."""

    def validate(self, credentials: Optional[AccountingCredentials]) -> ValidationResult:
        valid = bool(credentials and credentials.access_token and credentials.company_id)
        return ValidationResult(valid=valid, status=200 if valid else 401)
