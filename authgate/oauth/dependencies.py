# authgate/oauth/dependencies.py
import logging
from typing import Annotated, Awaitable, Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..settings import Settings
from .errors import InsufficientScopeError, InvalidTokenError
from .models import TokenClaims
from .provider import AuthorizationServer

logger = logging.getLogger(__name__)


def get_authorization_server(request: Request) -> AuthorizationServer:
    """The AuthorizationServer built during application startup."""
    authorization_server = getattr(request.app.state, "authorization_server", None)
    if authorization_server is None:
        logger.error("CRITICAL: AuthorizationServer not initialized on app.state.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization service unavailable."
        )
    return authorization_server


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


async def get_token_claims(
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> TokenClaims:
    """
    Validates the request's bearer token with every accepted validator.
    Internal tokens, tokens minted from assertions, and raw IdP assertions all pass here.
    """
    token = extract_bearer_token(authorization)
    if not token:
        logger.warning("Bearer auth: missing or malformed Authorization header.")
        raise InvalidTokenError("Missing bearer token.")
    return await authorization_server.validate_enhanced(token)


def require_scopes(*required_scopes: str) -> Callable[..., Awaitable[TokenClaims]]:
    """Dependency factory: a valid bearer token carrying every listed scope."""

    async def _require_scopes(
        claims: Annotated[TokenClaims, Depends(get_token_claims)],
    ) -> TokenClaims:
        missing = [scope for scope in required_scopes if scope not in claims.scopes]
        if missing:
            logger.warning(
                f"Bearer auth: subject '{claims.sub}' (client '{claims.client_id}') lacks scopes {missing}."
            )
            raise InsufficientScopeError(required_scope=" ".join(required_scopes))
        return claims

    return _require_scopes
