# authgate/main.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from typing import Optional

import httpx

from .settings import Settings, settings
from .utils.clock import Clock, utc_now
from .oauth.bootstrap import build_assertion_verifier, populate_registries
from .oauth.credentials import BcryptCredentialVerifier
from .oauth.endpoints import oauth_router
from .oauth.errors import OAuthError
from .oauth.identity_bridge import FederatedIdentityBridge
from .oauth.memory_stores import (
    InMemoryAuthCodeStore, InMemoryClientRegistry, InMemoryTokenStore, InMemoryUserStore
)
from .oauth.provider import AuthorizationServer
from .oauth.token_codec import TokenCodec

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else "INFO",
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


def create_app(
    app_settings: Optional[Settings] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """
    Builds the FastAPI application. Every store and component is created in
    the lifespan and handed to the AuthorizationServer; nothing is global.

    http_transport and clock exist so tests can fake the external IdP and time.
    """
    app_settings = app_settings or settings
    clock = clock or utc_now

    @asynccontextmanager
    async def authgate_lifespan(app_instance: FastAPI):
        logger.info("Application startup initiated.")
        if not app_settings.jwt_secret:
            logger.error("CRITICAL: JWT_SECRET is not configured. Refusing to start.")
            raise RuntimeError("JWT_SECRET must be set to start the authorization server.")

        credential_verifier = BcryptCredentialVerifier(rounds=app_settings.bcrypt_rounds)
        client_registry = InMemoryClientRegistry()
        user_store = InMemoryUserStore()
        await populate_registries(app_settings, client_registry, user_store, credential_verifier)
        logger.info("Client registry and user store populated from configuration.")

        http_client = httpx.AsyncClient(
            timeout=app_settings.external_http_timeout_seconds,
            transport=http_transport,
        )
        identity_bridge = FederatedIdentityBridge(
            client_registry=client_registry,
            credential_verifier=credential_verifier,
            assertion_verifier=build_assertion_verifier(app_settings),
            http_client=http_client,
            bearer_client_id=app_settings.federation_bearer_client_id,
            clock=clock,
        )
        app_instance.state.settings = app_settings
        app_instance.state.authorization_server = AuthorizationServer(
            client_registry=client_registry,
            user_store=user_store,
            auth_code_store=InMemoryAuthCodeStore(clock=clock),
            token_store=InMemoryTokenStore(),
            token_codec=TokenCodec(app_settings.jwt_secret, app_settings.jwt_algorithm, clock=clock),
            credential_verifier=credential_verifier,
            identity_bridge=identity_bridge,
            clock=clock,
        )
        logger.info(f"{app_settings.app_name} ready.")

        try:
            yield
        finally:
            logger.info("Application shutdown initiated.")
            await http_client.aclose()
            app_instance.state.authorization_server = None
            logger.info("External HTTP client closed.")

    app = FastAPI(
        title=app_settings.app_name,
        debug=app_settings.debug_mode,
        version=APP_VERSION,
        lifespan=authgate_lifespan
    )

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request: Request, exc: OAuthError):
        # RFC 6749 section 5.2 body, not FastAPI's {"detail": ...} wrapper
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)

    @app.get("/health")
    async def health_api(request: Request):
        authorization_server = getattr(request.app.state, "authorization_server", None)
        return {
            "status": "healthy" if authorization_server is not None else "starting",
            "app": app_settings.app_name,
            "federation": "enabled" if app_settings.federation_enabled else "disabled",
        }

    app.include_router(oauth_router, prefix="/oauth", tags=["OAuth 2.0 Authorization Server"])
    return app


app = create_app()

logger.info(f"{settings.app_name} initialized. Routers mounted.")
