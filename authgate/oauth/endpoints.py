# authgate/oauth/endpoints.py
from fastapi import APIRouter, Depends, Request, Form, Query
from fastapi.responses import RedirectResponse
from typing import Annotated, Optional, Dict, Any, Union
import logging
from pydantic import ValidationError as PydanticValidationError

from ..settings import Settings
from .dependencies import get_app_settings, get_authorization_server, require_scopes
from .errors import (
    AccessDeniedError, InvalidClientError, InvalidRequestError, OAuthError, ServerError
)
from .models import (
    AuthorizationPrompt, FederatedConnectedAppClient, FederatedTokenResponse,
    RevocationRequest, TokenClaims, TokenRequest, TokenResponse, WellKnownOAuthMetadata,
)
from .provider import AuthorizationServer

logger = logging.getLogger(__name__)
oauth_router = APIRouter()


async def _read_request_body(request: Request) -> Dict[str, Any]:
    """Reads a JSON or form-encoded body into a flat dict."""
    content_type = request.headers.get("content-type", "").lower()
    try:
        if "application/json" in content_type:
            body = await request.json()
        else:
            form = await request.form()
            body = {key: value for key, value in form.items() if isinstance(value, str)}
    except ValueError:
        raise InvalidRequestError("Request body could not be parsed.")
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be an object.")
    return body


def _describe_validation_error(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"Field '{str(err.get('loc', ['N/A'])[-1])}': {err.get('msg', 'Invalid')}"
        for err in exc.errors()
    )


# --- Authorization endpoint ---

@oauth_router.get("/authorize", response_model=AuthorizationPrompt, name="oauth_authorize_get")
async def authorize_get(
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
    response_type: Annotated[Optional[str], Query()] = None,
    client_id: Annotated[Optional[str], Query()] = None,
    redirect_uri: Annotated[Optional[str], Query()] = None,
    scope: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
):
    """
    Validates an authorization request and returns what the UI layer needs
    to render a login prompt. Scope is already narrowed to the client's scopes.
    """
    client, granted_scopes = await authorization_server.validate_authorization_request(
        client_id, redirect_uri, response_type, scope
    )
    return AuthorizationPrompt(
        client_id=client.client_id,
        client_name=client.client_name,
        redirect_uri=redirect_uri,
        scope=" ".join(granted_scopes),
        state=state,
    )


@oauth_router.post("/authorize", response_class=RedirectResponse, name="oauth_authorize_post")
async def authorize_post(
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
    username: Annotated[Optional[str], Form()] = None,
    password: Annotated[Optional[str], Form()] = None,
    client_id: Annotated[Optional[str], Form()] = None,
    redirect_uri: Annotated[Optional[str], Form()] = None,
    scope: Annotated[Optional[str], Form()] = None,
    state: Annotated[Optional[str], Form()] = None,
):
    """Login form submission: authenticate the user, issue a code, redirect back to the client."""
    _client, granted_scopes = await authorization_server.validate_authorization_request(
        client_id, redirect_uri, "code", scope
    )
    if not username or not password:
        raise InvalidRequestError("Username and password are required.")
    user_id = await authorization_server.authenticate_user(username, password)
    code = await authorization_server.issue_code(client_id, redirect_uri, user_id, granted_scopes)

    redirect_target = authorization_server.build_code_redirect(redirect_uri, code, state)
    logger.info(f"Authorization granted for client '{client_id}'; redirecting to registered URI.")
    return RedirectResponse(url=redirect_target, status_code=302)


# --- Token endpoint ---

@oauth_router.post(
    "/token",
    response_model=Union[FederatedTokenResponse, TokenResponse],
    response_model_exclude_none=True,
    name="oauth_token",
)
async def token(
    request: Request,
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
):
    """OAuth token endpoint for every supported grant; accepts form or JSON bodies."""
    body = await _read_request_body(request)
    try:
        token_request_model = TokenRequest.model_validate(body)
    except PydanticValidationError as e:
        logger.warning(f"Token request parameter validation failed: {e.errors()}")
        raise InvalidRequestError(
            error_description=f"Invalid token request parameters: {_describe_validation_error(e)}"
        )

    logger.info(
        f"Token endpoint called. Grant type: '{token_request_model.grant_type}' "
        f"Client ID: {token_request_model.client_id}"
    )
    try:
        return await authorization_server.handle_token_request(token_request_model)
    except OAuthError as e:
        logger.warning(f"Token endpoint OAuthError: {e.error} - {e.error_description}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error during /token: {e}", exc_info=True)
        raise ServerError(error_description="An unexpected error occurred while processing the token request.")


# --- Revocation endpoint ---

@oauth_router.post("/revoke", name="oauth_revoke")
async def revoke(
    request: Request,
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
):
    body = await _read_request_body(request)
    try:
        revocation_request = RevocationRequest.model_validate(body)
    except PydanticValidationError as e:
        raise InvalidRequestError(_describe_validation_error(e))

    if not revocation_request.token:
        raise InvalidRequestError("Token required.")

    if not await authorization_server.revoke(revocation_request.token):
        raise InvalidRequestError("Token not found")
    return {"revoked": True}


# --- Federated identity endpoints ---

@oauth_router.get("/federated/authorize", response_class=RedirectResponse, name="oauth_federated_authorize")
async def federated_authorize(
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
    response_type: Annotated[Optional[str], Query()] = None,
    client_id: Annotated[Optional[str], Query()] = None,
    redirect_uri: Annotated[Optional[str], Query()] = None,
    scope: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
):
    """Sends the user agent to the external IdP's login page."""
    client, granted_scopes = await authorization_server.validate_authorization_request(
        client_id, redirect_uri, response_type, scope
    )
    if not isinstance(client, FederatedConnectedAppClient):
        logger.warning(f"Client '{client.client_id}' (kind: {client.kind}) used the federated authorize route.")
        raise InvalidClientError("Client is not a federated connected app.")

    idp_url = authorization_server.identity_bridge.build_authorization_url(
        client, redirect_uri, granted_scopes, state
    )
    logger.info(f"Redirecting client '{client.client_id}' to external IdP login.")
    return RedirectResponse(url=idp_url, status_code=302)


@oauth_router.get(
    "/federated/callback",
    response_model=FederatedTokenResponse,
    response_model_exclude_none=True,
    name="oauth_federated_callback",
)
async def federated_callback(
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
    app_settings: Annotated[Settings, Depends(get_app_settings)],
    code: Annotated[Optional[str], Query()] = None,
    state: Annotated[Optional[str], Query()] = None,
    error: Annotated[Optional[str], Query()] = None,
    error_description: Annotated[Optional[str], Query()] = None,
):
    """
    Redirect target of the external IdP. Exchanges the external code using the
    server-side connected-app credentials and returns first-party tokens.
    """
    logger.info(f"Federated callback received. Code: {'SET' if code else 'NOT_SET'}, State: '{state}'")

    if error:
        logger.warning(f"External IdP returned an error: {error} - {error_description}")
        raise AccessDeniedError(error_description or "External authorization failed.")
    if not code:
        raise InvalidRequestError("Authorization code not provided.")
    if not app_settings.federation_client_id or not app_settings.federation_client_secret:
        logger.error("Federated callback hit but FEDERATION_CLIENT_ID / FEDERATION_CLIENT_SECRET are not set.")
        raise ServerError("External identity provider client not configured.")

    try:
        return await authorization_server.exchange_external_code(
            code,
            app_settings.federation_client_id,
            app_settings.federation_client_secret,
            app_settings.federation_redirect_uri,
        )
    except OAuthError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error in federated callback: {e}", exc_info=True)
        raise ServerError(error_description="An unexpected error occurred during the federated callback.")


# --- Protected example resource and discovery ---

@oauth_router.get("/userinfo", response_model=TokenClaims, response_model_exclude_none=True, name="oauth_userinfo")
async def userinfo(claims: Annotated[TokenClaims, Depends(require_scopes())]):
    return claims


@oauth_router.get(
    "/.well-known/oauth-authorization-server",
    response_model=WellKnownOAuthMetadata,
    name="oauth_metadata"
)
async def get_oauth_metadata(
    request: Request,
    authorization_server: Annotated[AuthorizationServer, Depends(get_authorization_server)],
):
    """OAuth discovery endpoint providing server metadata."""
    base_url = str(request.base_url).rstrip('/')
    clients = await authorization_server.client_registry.list_clients()
    scopes_supported = sorted({scope for client in clients for scope in client.scopes})

    return WellKnownOAuthMetadata(
        issuer=f"{base_url}{request.app.url_path_for('oauth_authorize_get').rsplit('/', 1)[0]}",
        authorization_endpoint=f"{base_url}{request.app.url_path_for('oauth_authorize_get')}",
        token_endpoint=f"{base_url}{request.app.url_path_for('oauth_token')}",
        revocation_endpoint=f"{base_url}{request.app.url_path_for('oauth_revoke')}",
        scopes_supported=scopes_supported,
    )
