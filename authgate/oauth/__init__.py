# authgate/oauth/__init__.py
# Embedded OAuth 2.0 Authorization Server package for authgate

# Core OAuth models and data structures
from .models import (
    OAuthClient,
    StandardClient,
    FederatedConnectedAppClient,
    FederatedBearerClient,
    IdPEndpointConfig,
    User,
    AuthCodeData,
    TokenRecord,
    TokenClaims,
    ExternalIdentity,
    TokenRequest,
    TokenResponse,
    FederatedTokenResponse,
    AuthorizationPrompt,
    WellKnownOAuthMetadata,
    JWT_BEARER_GRANT_TYPE,
)

# OAuth error types and component-level failures
from .errors import (
    OAuthError,
    InvalidRequestError,
    InvalidClientError,
    InvalidGrantError,
    InvalidScopeError,
    AccessDeniedError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
    InvalidTokenError,
    InsufficientScopeError,
    ServerError,
    TokenCodecError,
    AuthorizationCodeError,
)

# Leaf components
from .credentials import CredentialVerifierProtocol, BcryptCredentialVerifier
from .token_codec import TokenCodec
from .storage_interfaces import (
    AbstractClientRegistry,
    AbstractUserStore,
    AbstractAuthCodeStore,
    AbstractTokenStore,
)
from .memory_stores import (
    InMemoryClientRegistry,
    InMemoryUserStore,
    InMemoryAuthCodeStore,
    InMemoryTokenStore,
)

# Federation and validation
from .identity_bridge import (
    FederatedIdentityBridge,
    AssertionSignatureVerifier,
    PublicKeyAssertionVerifier,
    ClaimsOnlyAssertionVerifier,
    UnconfiguredAssertionVerifier,
)
from .validation import TokenValidator, ValidationOutcome

# Main authorization server implementation
from .provider import AuthorizationServer

# FastAPI router endpoints and dependencies
from .endpoints import oauth_router
from .dependencies import require_scopes, get_token_claims


__all__ = [
    # Models
    "OAuthClient", "StandardClient", "FederatedConnectedAppClient", "FederatedBearerClient",
    "IdPEndpointConfig", "User", "AuthCodeData", "TokenRecord", "TokenClaims",
    "ExternalIdentity", "TokenRequest", "TokenResponse", "FederatedTokenResponse",
    "AuthorizationPrompt", "WellKnownOAuthMetadata", "JWT_BEARER_GRANT_TYPE",

    # Errors
    "OAuthError", "InvalidRequestError", "InvalidClientError", "InvalidGrantError",
    "InvalidScopeError", "AccessDeniedError", "UnsupportedGrantTypeError",
    "UnsupportedResponseTypeError", "InvalidTokenError", "InsufficientScopeError",
    "ServerError", "TokenCodecError", "AuthorizationCodeError",

    # Components
    "CredentialVerifierProtocol", "BcryptCredentialVerifier", "TokenCodec",
    "AbstractClientRegistry", "AbstractUserStore", "AbstractAuthCodeStore", "AbstractTokenStore",
    "InMemoryClientRegistry", "InMemoryUserStore", "InMemoryAuthCodeStore", "InMemoryTokenStore",
    "FederatedIdentityBridge", "AssertionSignatureVerifier", "PublicKeyAssertionVerifier",
    "ClaimsOnlyAssertionVerifier", "UnconfiguredAssertionVerifier",
    "TokenValidator", "ValidationOutcome",
    "AuthorizationServer",

    # HTTP
    "oauth_router", "require_scopes", "get_token_claims",
]
