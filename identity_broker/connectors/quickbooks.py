"""QuickBooks Online connector: OAuth 2.0 authorization, code exchange and refresh."""
from typing import Any, Optional

from authlib.integrations.requests_client import OAuth2Session

from identity_broker.config import Settings

AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"

PRODUCTION_API_BASE = "https://quickbooks.api.intuit.com"
SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com"


class QuickBooksConnector:
    """Intuit OAuth client bound to one app registration and environment."""

    def __init__(self, settings: Settings):
        self.client_id = settings.qbo_client_id
        self.client_secret = settings.qbo_client_secret
        self.redirect_uri = settings.qbo_redirect_uri
        self.environment = settings.qbo_environment

    @property
    def api_base_url(self) -> str:
        return PRODUCTION_API_BASE if self.environment == "production" else SANDBOX_API_BASE

    def _client(self) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=ACCOUNTING_SCOPE,
        )

    def authorization_url(self, state: str) -> str:
        """Generate the URL the user visits to connect their QBO company."""
        url, _ = self._client().create_authorization_url(
            f"{AUTH_URL}/authorize",
            state=state,
            response_type="code",
        )
        return url

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange authorization code for access/refresh tokens."""
        return self._client().fetch_token(TOKEN_URL, code=code, grant_type="authorization_code")

    def refresh(self, refresh_token: Optional[str]) -> dict[str, Any]:
        """Refresh access token using refresh token."""
        if not refresh_token:
            raise ValueError("No QuickBooks refresh token stored")
        return self._client().refresh_token(TOKEN_URL, refresh_token=refresh_token)
