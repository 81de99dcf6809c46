# authgate/oauth/errors.py
from fastapi import HTTPException, status
from typing import Dict, Optional


class OAuthError(HTTPException):
    """Base class for OAuth 2.0 errors that properly formats error responses."""

    def __init__(
        self,
        status_code: int,
        error: str,
        error_description: str | None = None,
        error_uri: str | None = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri

        # Standard OAuth Bearer token authentication header
        final_headers = headers or {"WWW-Authenticate": "Bearer"}

        # RFC 6749 section 5.2 error body
        detail = {"error": error}
        if error_description:
            detail["error_description"] = error_description
        if error_uri:
            detail["error_uri"] = error_uri

        super().__init__(status_code=status_code, detail=detail, headers=final_headers)

    def __str__(self) -> str:
        if self.error_description:
            return f"{self.error}: {self.error_description}"
        return self.error


class InvalidRequestError(OAuthError):
    """
    The request is missing a required parameter, includes an
    unsupported parameter value (other than grant type),
    repeats a parameter, or is otherwise malformed.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None, error_uri: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_request",
            error_description=error_description,
            error_uri=error_uri
        )


class InvalidClientError(OAuthError):
    """
    Client authentication failed (e.g., unknown client, no
    client authentication included, or unsupported
    authentication method).
    (RFC 6749 - Section 5.2)
    """

    def __init__(
        self,
        error_description: str | None = "Client authentication failed.",
        error_uri: str | None = None
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="invalid_client",
            error_description=error_description,
            error_uri=error_uri
        )


class InvalidGrantError(OAuthError):
    """
    The provided authorization grant (e.g., authorization
    code, resource owner credentials) or refresh token is
    invalid, expired, revoked, does not match the redirection
    URI used in the authorization request, or was issued to
    another client.
    (RFC 6749 - Section 5.2)
    """

    def __init__(
        self,
        error_description: str | None = "Invalid authorization grant or refresh token.",
        error_uri: str | None = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_grant",
            error_description=error_description,
            error_uri=error_uri
        )


class InvalidScopeError(OAuthError):
    """
    The requested scope is invalid, unknown, malformed, or
    exceeds the scope granted by the resource owner.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None, error_uri: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_scope",
            error_description=error_description,
            error_uri=error_uri
        )


class AccessDeniedError(OAuthError):
    """
    The resource owner or authorization server denied the request.
    Raised for bad user credentials at the login step; the description
    never says which of username or password was wrong.
    (RFC 6749 - Section 4.1.2.1)
    """

    def __init__(
        self,
        error_description: str | None = "Invalid credentials.",
        error_uri: str | None = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="access_denied",
            error_description=error_description,
            error_uri=error_uri
        )


class UnsupportedGrantTypeError(OAuthError):
    """
    The authorization grant type is not supported by the
    authorization server.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None, error_uri: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="unsupported_grant_type",
            error_description=error_description,
            error_uri=error_uri
        )


class UnsupportedResponseTypeError(OAuthError):
    """
    The authorization server does not support obtaining an
    authorization code using this method.
    (RFC 6749 - Section 4.1.2.1)
    """

    def __init__(
        self,
        error_description: str | None = "Only the authorization code flow is supported.",
        error_uri: str | None = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="unsupported_response_type",
            error_description=error_description,
            error_uri=error_uri
        )


class InvalidTokenError(OAuthError):
    """
    The access token provided is expired, revoked, malformed, or
    invalid for other reasons. The resource SHOULD respond with
    the HTTP 401 (Unauthorized) status code.
    (RFC 6750 - Section 3.1)
    """

    def __init__(
        self,
        error_description: str | None = "The access token is invalid.",
        realm: str | None = None
    ):
        # Construct WWW-Authenticate header according to RFC 6750
        realm_value = realm if realm else "authgate"
        www_authenticate = f'Bearer realm="{realm_value}", error="invalid_token"'
        if error_description:
            www_authenticate += f', error_description="{error_description}"'

        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="invalid_token",
            error_description=error_description,
            headers={"WWW-Authenticate": www_authenticate}
        )


class InsufficientScopeError(OAuthError):
    """
    The request requires higher privileges than provided by the
    access token. The resource server SHOULD respond with the HTTP
    403 (Forbidden) status code and MAY include the "scope"
    attribute with the scope necessary to access the resource.
    (RFC 6750 - Section 3.1)
    """

    def __init__(
        self,
        required_scope: str | None = None,
        error_description: str | None = "The request requires higher privileges than provided by the access token.",
        realm: str | None = None
    ):
        realm_value = realm if realm else "authgate"
        www_authenticate = f'Bearer realm="{realm_value}", error="insufficient_scope"'
        if required_scope:
            www_authenticate += f', scope="{required_scope}"'
        if error_description:
            www_authenticate += f', error_description="{error_description}"'

        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="insufficient_scope",
            error_description=error_description,
            headers={"WWW-Authenticate": www_authenticate}
        )


class ServerError(OAuthError):
    """
    The authorization server encountered an unexpected
    condition that prevented it from fulfilling the request,
    including an unreachable or misconfigured external identity provider.
    (RFC 6749 - Section 4.1.2.1)
    """

    def __init__(
        self,
        error_description: str | None = "The authorization server encountered an internal error.",
        error_uri: str | None = None
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="server_error",
            error_description=error_description,
            error_uri=error_uri
        )


# --- Component-level failures ---
# These never reach HTTP directly; the authorization server maps them to the
# OAuth errors above.

class TokenCodecError(Exception):
    """Base class for failures while verifying a self-contained bearer token."""


class TokenSignatureInvalid(TokenCodecError):
    """The token signature does not match the shared signing secret."""


class TokenExpired(TokenCodecError):
    """The token's embedded expiry is in the past."""


class TokenMalformed(TokenCodecError):
    """The token could not be decoded or lacks required claims."""


class AuthorizationCodeError(Exception):
    """Base class for authorization code lookup failures."""


class AuthorizationCodeNotFound(AuthorizationCodeError):
    """The code was never issued or has already been consumed."""


class AuthorizationCodeExpired(AuthorizationCodeError):
    """The code exists but its lifetime has elapsed; it is deleted on discovery."""
