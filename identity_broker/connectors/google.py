"""Google Workspace connector: OAuth 2.0 consent, code exchange, profile and refresh."""
from typing import Any, Optional

from authlib.integrations.requests_client import OAuth2Session

from identity_broker.config import Settings

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"

# Requested on every consent; the workflows use sheets, mail, calendar, contacts and drive
WORKSPACE_SCOPES = [
    "profile",
    "email",
    "https://www.googleapis.com/auth/spreadsheets.readonly",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/contacts.other.readonly",
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.compose",
    "https://www.googleapis.com/auth/gmail.labels",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/drive",
]


class GoogleConnector:
    """Google OAuth client bound to one app registration."""

    def __init__(self, settings: Settings):
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_uri = settings.google_redirect_uri
        self.timeout = settings.token_validation_timeout_seconds

    def _client(self, token: Optional[dict[str, Any]] = None) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=" ".join(WORKSPACE_SCOPES),
            token=token,
        )

    def authorization_url(self, state: str) -> str:
        """Consent URL with offline access and forced consent so a refresh token is always issued."""
        url, _ = self._client().create_authorization_url(
            AUTH_URL,
            state=state,
            access_type="offline",
            prompt="consent",
        )
        return url

    def exchange_code(self, code: str) -> dict[str, Any]:
        return self._client().fetch_token(TOKEN_URL, code=code, grant_type="authorization_code")

    def fetch_profile(self, token: dict[str, Any]) -> dict[str, Any]:
        """Identity claim (email, name, picture) for the consenting user."""
        r = self._client(token=token).get(USERINFO_URL, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def refresh(self, refresh_token: Optional[str]) -> dict[str, Any]:
        if not refresh_token:
            raise ValueError("No Google refresh token stored")
        return self._client().refresh_token(TOKEN_URL, refresh_token=refresh_token)
