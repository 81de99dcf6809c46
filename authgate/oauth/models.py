# authgate/oauth/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, FrozenSet, List, Literal, Optional, Union
from datetime import datetime, timezone
from uuid import uuid4

# Fixed token and code lifetimes (seconds)
AUTH_CODE_LIFETIME_SECONDS = 600  # 10 minutes
ACCESS_TOKEN_LIFETIME_SECONDS = 900  # 15 minutes
REFRESH_TOKEN_LIFETIME_SECONDS = 3600 * 24 * 7  # 7 days

JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

TokenType = Literal["access", "refresh"]


class IdPEndpointConfig(BaseModel):
    """Where and how to reach the external identity provider for a federated client."""
    model_config = ConfigDict(frozen=True)

    login_base_url: str = Field(
        description="Base login URL of the IdP; also the expected 'iss' of its assertions."
    )
    external_client_id: str = Field(
        description="Client ID the IdP knows us by; the expected 'aud' of its assertions."
    )
    api_version: str = "v59.0"
    authorize_path: str = "/services/oauth2/authorize"
    token_path: str = "/services/oauth2/token"
    userinfo_path: str = "/services/oauth2/userinfo"

    @property
    def authorize_url(self) -> str:
        return f"{self.login_base_url.rstrip('/')}{self.authorize_path}"

    @property
    def token_url(self) -> str:
        return f"{self.login_base_url.rstrip('/')}{self.token_path}"


class _RegisteredClient(BaseModel):
    """Fields shared by every registered OAuth client application."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_name: str
    client_secret_hash: Optional[str] = None
    redirect_uris: FrozenSet[str] = Field(default_factory=frozenset)
    scopes: FrozenSet[str] = Field(default_factory=frozenset)


class StandardClient(_RegisteredClient):
    """A confidential web client using the plain authorization-code flow."""
    kind: Literal["standard"] = "standard"


class FederatedConnectedAppClient(_RegisteredClient):
    """A client whose users authenticate at the external IdP via its code flow."""
    kind: Literal["federated-connected-app"] = "federated-connected-app"
    idp: IdPEndpointConfig


class FederatedBearerClient(_RegisteredClient):
    """Server-to-server client presenting IdP-signed JWT bearer assertions."""
    kind: Literal["federated-bearer"] = "federated-bearer"
    idp: IdPEndpointConfig


OAuthClient = Annotated[
    Union[StandardClient, FederatedConnectedAppClient, FederatedBearerClient],
    Field(discriminator="kind"),
]


class User(BaseModel):
    """A resource owner able to log in at the authorize step."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    password_hash: str
    scopes: FrozenSet[str] = Field(default_factory=frozenset)


class AuthCodeData(BaseModel):
    """Grant context remembered between the authorize step and the code exchange."""
    code: str = Field(description="The authorization code.")
    client_id: str
    redirect_uri: str
    user_id: str
    scopes: List[str] = Field(default_factory=list)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime


class TokenRecord(BaseModel):
    """Live state of an issued access/refresh token pair."""
    record_id: str = Field(default_factory=lambda: uuid4().hex)
    access_token: str
    refresh_token: str
    client_id: str
    user_id: str
    scopes: List[str] = Field(default_factory=list)
    expires_at: datetime  # access token expiry
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    external_user_id: Optional[str] = None
    external_org_id: Optional[str] = None


class TokenClaims(BaseModel):
    """Decoded, verified contents of a bearer token."""
    model_config = ConfigDict(extra="ignore")

    sub: str
    client_id: str
    type: TokenType = "access"
    scope: str = ""
    iat: Optional[int] = None
    exp: Optional[int] = None
    jti: Optional[str] = None
    external_user_id: Optional[str] = None
    external_org_id: Optional[str] = None
    grant: Optional[str] = None

    @property
    def scopes(self) -> List[str]:
        return self.scope.split()


class ExternalIdentity(BaseModel):
    """Identity established by the external IdP, before it is re-minted locally."""
    subject: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    organization_id: Optional[str] = None
    instance_url: Optional[str] = None
    api_base_url: Optional[str] = None


class TokenRequest(BaseModel):
    """OAuth token request parameters for every supported grant."""
    grant_type: str = Field(
        description="'authorization_code', 'refresh_token' or the jwt-bearer grant URN."
    )
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    assertion: Optional[str] = None


class TokenResponse(BaseModel):
    """OAuth token response structure as per RFC 6749."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = ACCESS_TOKEN_LIFETIME_SECONDS
    refresh_token: Optional[str] = None
    scope: str = ""


class ExternalUserSummary(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    organization_id: Optional[str] = None


class FederatedTokenResponse(TokenResponse):
    """Token response for the federated code flow, echoing who the IdP said the user is."""
    external_user: ExternalUserSummary


class AuthorizationPrompt(BaseModel):
    """Validated authorize parameters handed to the UI layer to render a login prompt."""
    client_id: str
    client_name: str
    redirect_uri: str
    scope: str
    state: Optional[str] = None


class RevocationRequest(BaseModel):
    token: Optional[str] = None
    token_type_hint: Optional[str] = None


class WellKnownOAuthMetadata(BaseModel):
    """OAuth 2.0 server metadata as defined in RFC 8414 for discovery endpoint."""
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: Optional[str] = None
    scopes_supported: Optional[List[str]] = None
    response_types_supported: List[str] = ["code"]
    grant_types_supported: List[str] = ["authorization_code", "refresh_token", JWT_BEARER_GRANT_TYPE]
    token_endpoint_auth_methods_supported: List[str] = ["client_secret_post"]
