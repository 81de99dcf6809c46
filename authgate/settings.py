# authgate/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# settings.py lives at <root>/authgate/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

DEFAULT_FEDERATION_SCOPES = ["email:validate", "api"]


class ClientRegistration(BaseModel):
    """A standard client declared in configuration. Give either a plaintext secret or its bcrypt hash."""
    client_id: str
    client_name: str
    client_secret: Optional[str] = None
    client_secret_hash: Optional[str] = None
    redirect_uris: List[str] = Field(default_factory=list)
    scopes: List[str] = Field(default_factory=list)


class UserRegistration(BaseModel):
    """A resource owner declared in configuration. Give either a plaintext password or its bcrypt hash."""
    user_id: str
    username: str
    password: Optional[str] = None
    password_hash: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)


def _default_clients() -> List[ClientRegistration]:
    return [
        ClientRegistration(
            client_id="email-validator-web",
            client_name="Email Validator Web App",
            client_secret="web-client-secret",
            redirect_uris=["http://localhost:3001"],
            scopes=["email:validate"],
        )
    ]


def _default_users() -> List[UserRegistration]:
    return [
        UserRegistration(
            user_id="user-1",
            username="demo@example.com",
            password="demo123",
            scopes=["email:validate"],
        )
    ]


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "authgate"
    debug_mode: bool = False

    # Token signing
    jwt_secret: Optional[str] = Field(
        default=None,
        description="Shared HS256 signing secret. MUST be set; startup fails without it."
    )
    jwt_algorithm: str = "HS256"
    bcrypt_rounds: int = 12

    # Bootstrapped registries (JSON lists when given through the environment)
    oauth_clients: List[ClientRegistration] = Field(default_factory=_default_clients)
    oauth_users: List[UserRegistration] = Field(default_factory=_default_users)

    # External identity provider (federation is disabled unless federation_client_id is set)
    federation_login_url: str = "https://login.salesforce.com"
    federation_client_id: Optional[str] = None
    federation_client_secret: Optional[str] = None
    federation_redirect_uri: str = "http://localhost:8000/oauth/federated/callback"
    federation_api_version: str = "v59.0"
    federation_scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_FEDERATION_SCOPES))
    federation_assertion_verification: Optional[Literal["public_key", "claims_only"]] = Field(
        default=None,
        description="How JWT bearer assertion signatures are checked. Unset means assertions are refused."
    )
    federation_assertion_public_key_path: Optional[str] = None
    external_http_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )

    @property
    def federation_enabled(self) -> bool:
        return bool(self.federation_client_id)

    @property
    def federation_bearer_client_id(self) -> Optional[str]:
        return f"{self.federation_client_id}_jwt" if self.federation_client_id else None


settings = Settings()

logger.debug(
    f"Settings loaded: app_name='{settings.app_name}', debug_mode={settings.debug_mode}, "
    f"jwt_secret={'********' if settings.jwt_secret else 'None'}, "
    f"federation={'enabled' if settings.federation_enabled else 'disabled'}"
)
