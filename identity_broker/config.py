"""
App configuration: provider credentials and secrets from environment.

Load from .env via pydantic_settings. In production, set ENVIRONMENT=production
so required secrets are validated at startup.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_SESSION_SECRET = "dev-session-secret-change-me"


class Settings(BaseSettings):
    """Application settings from environment. No defaults for secrets in production."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = "sqlite:///./customers.db"  # Use postgresql://... for production
    public_base_url: str = "http://localhost:8000"
    session_secret: str = DEV_SESSION_SECRET
    environment: str = "development"  # development | production (production validates secrets)
    log_level: str = "INFO"

    # Workspace provider (Google)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/auth/workspace/callback"

    # Accounting provider (QuickBooks Online)
    qbo_client_id: str = ""
    qbo_client_secret: str = ""
    qbo_redirect_uri: str = "http://localhost:8000/auth/accounting/callback"
    qbo_environment: str = "sandbox"  # sandbox | production

    # Outbound introspection calls must not hang a caller
    token_validation_timeout_seconds: float = 10.0

    # Empty disables the X-API-Key check on admin/listing routes
    admin_api_key: str = ""

    rate_limit_requests_per_minute_ip: int = 100
    rate_limit_requests_per_minute_customer: int = 60

    @model_validator(mode="after")
    def validate_production_secrets(self):
        """Fail fast in production if provider credentials or the session secret are missing."""
        if self.environment != "production":
            return self
        if not (self.google_client_id and self.google_client_secret):
            raise ValueError(
                "In production, GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in .env"
            )
        if not (self.qbo_client_id and self.qbo_client_secret):
            raise ValueError(
                "In production, QBO_CLIENT_ID and QBO_CLIENT_SECRET must be set in .env"
            )
        if not self.session_secret or self.session_secret == DEV_SESSION_SECRET:
            raise ValueError("In production, SESSION_SECRET must be set in .env")
        return self

    def workspace_auth_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/auth/workspace"

    def accounting_auth_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/auth/accounting"


settings = Settings()
