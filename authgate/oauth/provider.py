# authgate/oauth/provider.py
import logging
from datetime import timedelta
from typing import Dict, Any, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

from ..utils.clock import Clock, utc_now
from .credentials import CredentialVerifierProtocol
from .errors import (
    AccessDeniedError, AuthorizationCodeError, AuthorizationCodeExpired,
    InvalidClientError, InvalidGrantError, InvalidRequestError, InvalidScopeError,
    InvalidTokenError, TokenCodecError, UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .identity_bridge import FederatedIdentityBridge
from .models import (
    ACCESS_TOKEN_LIFETIME_SECONDS, JWT_BEARER_GRANT_TYPE, REFRESH_TOKEN_LIFETIME_SECONDS,
    ExternalIdentity, ExternalUserSummary, FederatedConnectedAppClient,
    FederatedTokenResponse, OAuthClient, TokenClaims, TokenRecord,
    TokenRequest, TokenResponse,
)
from .storage_interfaces import (
    AbstractAuthCodeStore, AbstractClientRegistry, AbstractTokenStore, AbstractUserStore
)
from .token_codec import TokenCodec
from .validation import (
    AssertionGrantTokenValidator, ExternalAssertionValidator, StoredAccessTokenValidator,
    TokenValidator, external_assertion_claims, run_validators,
)

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL = timedelta(seconds=ACCESS_TOKEN_LIFETIME_SECONDS)
REFRESH_TOKEN_TTL = timedelta(seconds=REFRESH_TOKEN_LIFETIME_SECONDS)


class AuthorizationServer:
    """
    Core logic for the authgate embedded OAuth 2.0 Authorization Server.
    Handles user login, code issuance, token issuance, refresh, revocation
    and validation, and re-mints identities coming from the external IdP.
    """

    def __init__(self,
                 client_registry: AbstractClientRegistry,
                 user_store: AbstractUserStore,
                 auth_code_store: AbstractAuthCodeStore,
                 token_store: AbstractTokenStore,
                 token_codec: TokenCodec,
                 credential_verifier: CredentialVerifierProtocol,
                 identity_bridge: FederatedIdentityBridge,
                 clock: Optional[Clock] = None):
        self.client_registry = client_registry
        self.user_store = user_store
        self.auth_code_store = auth_code_store
        self.token_store = token_store
        self.token_codec = token_codec
        self.credential_verifier = credential_verifier
        self.identity_bridge = identity_bridge
        self._clock = clock or utc_now

        self._stored_token_validator = StoredAccessTokenValidator(token_codec, token_store, self._clock)
        # Internal tokens are tried before external assertions
        self.validators: List[TokenValidator] = [
            self._stored_token_validator,
            AssertionGrantTokenValidator(token_codec, client_registry),
            ExternalAssertionValidator(identity_bridge),
        ]
        logger.info("AuthorizationServer initialized with client, user, code and token stores.")

    # --- Client and scope checks ---

    async def _validate_client(self, client_id: str, redirect_uri: Optional[str] = None) -> OAuthClient:
        """
        Resolves the client and optionally checks the redirect URI is registered to it.

        Raises:
            InvalidClientError: If client_id is unknown
            InvalidRequestError: If redirect_uri is not registered for the client
        """
        client = await self.client_registry.lookup(client_id)
        if not client:
            logger.warning(f"Unknown client_id: {client_id}")
            raise InvalidClientError(f"Unknown client_id: {client_id}")

        # Exact string membership, no normalization
        if redirect_uri is not None and redirect_uri not in client.redirect_uris:
            logger.warning(
                f"Redirect URI '{redirect_uri}' not registered for client '{client_id}'. "
                f"Registered: {sorted(client.redirect_uris)}"
            )
            raise InvalidRequestError("Invalid redirect_uri for the client.")
        return client

    def _restrict_scopes(self, requested_scopes: Iterable[str], client: OAuthClient) -> List[str]:
        """
        Intersects requested scopes with the client's scopes, keeping request order.

        Raises:
            InvalidScopeError: If none of the requested scopes are permitted
        """
        requested = list(dict.fromkeys(s for s in requested_scopes if s))
        granted_scopes = [scope for scope in requested if scope in client.scopes]

        for scope in requested:
            if scope not in client.scopes:
                logger.warning(
                    f"Scope '{scope}' requested by client '{client.client_id}' "
                    f"is not in its scopes: {sorted(client.scopes)}."
                )

        if not granted_scopes:
            logger.warning(
                f"Client '{client.client_id}' requested scopes {requested}, "
                f"but none are permitted."
            )
            raise InvalidScopeError("Invalid scope requested.")

        logger.debug(f"Requested scopes: {requested}, granted scopes: {granted_scopes} for client '{client.client_id}'.")
        return granted_scopes

    async def _authenticate_client(self, client_id: str, client_secret: str) -> OAuthClient:
        client = await self.client_registry.lookup(client_id)
        digest = client.client_secret_hash if client and client.client_secret_hash else None
        secret_ok = await self.credential_verifier.verify_async(
            client_secret or "", digest or self.credential_verifier.dummy_digest
        )
        if client is None or digest is None or not secret_ok:
            logger.warning(f"Client authentication failed for '{client_id}'.")
            raise InvalidClientError()
        return client

    # --- Authorization step ---

    async def authenticate_user(self, username: str, password: str) -> str:
        """Checks resource owner credentials; returns the user ID."""
        user = await self.user_store.find_by_username(username)
        if user is None:
            # Same bcrypt cost as a real mismatch
            await self.credential_verifier.verify_async(password, self.credential_verifier.dummy_digest)
            logger.info("Login failed: unknown username.")
            raise AccessDeniedError()

        if not await self.credential_verifier.verify_async(password, user.password_hash):
            logger.info(f"Login failed for user '{user.user_id}': bad password.")
            raise AccessDeniedError()

        logger.info(f"User '{user.user_id}' authenticated.")
        return user.user_id

    async def validate_authorization_request(
        self,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        response_type: Optional[str],
        scope: Optional[str],
    ) -> Tuple[OAuthClient, List[str]]:
        """
        Validates authorize parameters and narrows the requested scopes.

        Returns:
            Tuple[OAuthClient, List[str]]: The client and granted scopes

        Raises:
            InvalidRequestError: Missing parameters or unregistered redirect URI
            UnsupportedResponseTypeError: response_type other than 'code'
            InvalidClientError: Unknown client
            InvalidScopeError: No requested scope is permitted
        """
        if not client_id or not redirect_uri or not response_type or not scope:
            raise InvalidRequestError("Missing required parameters.")

        if response_type != "code":
            logger.warning(f"Unsupported response_type: {response_type}")
            raise UnsupportedResponseTypeError()

        client = await self._validate_client(client_id, redirect_uri)
        granted_scopes = self._restrict_scopes(scope.split(), client)

        logger.info(
            f"Authorization parameters validated for client '{client.client_id}'. "
            f"Granted scopes: {granted_scopes}"
        )
        return client, granted_scopes

    async def issue_code(self, client_id: str, redirect_uri: str, user_id: str, scopes: Iterable[str]) -> str:
        """Issues a single-use authorization code bound to client, redirect URI and user."""
        client = await self._validate_client(client_id, redirect_uri)
        scopes = list(scopes)
        if not scopes or any(scope not in client.scopes for scope in scopes):
            logger.warning(f"Refusing to issue code for client '{client_id}' with scopes {scopes}.")
            raise InvalidScopeError("Scopes exceed those registered for the client.")

        code = await self.auth_code_store.issue(client_id, redirect_uri, user_id, scopes)
        logger.info(f"Authorization code issued for user '{user_id}', client '{client_id}', scopes: {scopes}.")
        return code

    def build_code_redirect(self, redirect_uri: str, code: str, state: Optional[str] = None) -> str:
        redirect_params = {"code": code}
        if state:
            redirect_params["state"] = state
        separator = "&" if "?" in redirect_uri else "?"
        return f"{redirect_uri}{separator}{urlencode(redirect_params)}"

    # --- Token issuance ---

    async def _mint_stored_tokens(
        self,
        client_id: str,
        user_id: str,
        scopes: List[str],
        external_user_id: Optional[str] = None,
        external_org_id: Optional[str] = None,
    ) -> TokenResponse:
        scope_str = " ".join(scopes)
        base_claims: Dict[str, Any] = {"sub": user_id, "client_id": client_id, "scope": scope_str}
        if external_user_id:
            base_claims["external_user_id"] = external_user_id
        if external_org_id:
            base_claims["external_org_id"] = external_org_id

        now = self._clock()
        access_token = self.token_codec.sign({**base_claims, "type": "access"}, ACCESS_TOKEN_TTL)
        refresh_token = self.token_codec.sign({**base_claims, "type": "refresh"}, REFRESH_TOKEN_TTL)

        record = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            client_id=client_id,
            user_id=user_id,
            scopes=scopes,
            expires_at=now + ACCESS_TOKEN_TTL,
            created_at=now,
            external_user_id=external_user_id,
            external_org_id=external_org_id,
        )
        await self.token_store.put(record)

        return TokenResponse(
            access_token=access_token,
            token_type="Bearer",
            expires_in=ACCESS_TOKEN_LIFETIME_SECONDS,
            refresh_token=refresh_token,
            scope=scope_str,
        )

    async def exchange_code(self, code: str, client_id: str, client_secret: str, redirect_uri: str) -> TokenResponse:
        """
        Exchanges an authorization code for an access/refresh token pair.

        The client is authenticated before the code is touched, so a bad secret
        never burns a code. Once consumed, any binding mismatch still leaves
        the code burned.
        """
        await self._authenticate_client(client_id, client_secret)

        try:
            auth_code_data = await self.auth_code_store.consume(code)
        except AuthorizationCodeExpired:
            logger.warning(f"Expired authorization code presented by client '{client_id}'.")
            raise InvalidGrantError("Authorization code has expired.")
        except AuthorizationCodeError:
            logger.warning(f"Unknown or already used authorization code presented by client '{client_id}'.")
            raise InvalidGrantError("Invalid authorization code.")

        if auth_code_data.client_id != client_id:
            logger.warning(
                f"Client ID mismatch. Expected {auth_code_data.client_id}, got {client_id}."
            )
            raise InvalidGrantError("Authorization code was not issued to this client.")

        if auth_code_data.redirect_uri != redirect_uri:
            logger.warning(
                "Redirect URI mismatch for authorization code. "
                f"Expected {auth_code_data.redirect_uri}, got {redirect_uri}."
            )
            raise InvalidGrantError("Redirect URI mismatch.")

        token_response = await self._mint_stored_tokens(
            client_id=auth_code_data.client_id,
            user_id=auth_code_data.user_id,
            scopes=auth_code_data.scopes,
        )
        logger.info(f"Access token issued for client '{client_id}', user '{auth_code_data.user_id}'.")
        return token_response

    async def refresh(self, refresh_token: str, client_id: Optional[str] = None) -> TokenResponse:
        """
        Issues a new access token for a live refresh token.

        Scopes, subject and external tags come from the stored record, never
        from the refresh token's own claims.
        """
        try:
            payload = self.token_codec.verify(refresh_token)
        except TokenCodecError as e:
            logger.warning(f"Refresh token rejected by codec: {type(e).__name__}")
            raise InvalidGrantError("Invalid refresh token.")
        if payload.get("type") != "refresh":
            logger.warning("Token presented for refresh is not a refresh token.")
            raise InvalidGrantError("Invalid refresh token.")

        record = await self.token_store.find_by_refresh_token(refresh_token)
        if record is None:
            logger.warning("Refresh token has no live record (revoked or never issued).")
            raise InvalidGrantError("Invalid refresh token.")

        if client_id is not None and record.client_id != client_id:
            logger.warning(
                f"Refresh token client_id mismatch. Expected {record.client_id}, got {client_id}."
            )
            raise InvalidGrantError("Refresh token was not issued to this client.")

        scope_str = " ".join(record.scopes)
        access_claims: Dict[str, Any] = {
            "sub": record.user_id,
            "client_id": record.client_id,
            "scope": scope_str,
            "type": "access",
        }
        if record.external_user_id:
            access_claims["external_user_id"] = record.external_user_id
        if record.external_org_id:
            access_claims["external_org_id"] = record.external_org_id

        new_access_token = self.token_codec.sign(access_claims, ACCESS_TOKEN_TTL)
        if not await self.token_store.touch(record, new_access_token, self._clock() + ACCESS_TOKEN_TTL):
            raise InvalidGrantError("Refresh token has been revoked.")

        logger.info(f"Access token refreshed for client '{record.client_id}', user '{record.user_id}'.")
        return TokenResponse(
            access_token=new_access_token,
            token_type="Bearer",
            expires_in=ACCESS_TOKEN_LIFETIME_SECONDS,
            refresh_token=refresh_token,  # Return the same refresh token
            scope=scope_str,
        )

    # --- Validation and revocation ---

    async def validate(self, access_token: str) -> TokenClaims:
        """Internal access tokens only: signature, type and a live store record."""
        outcome = await self._stored_token_validator.validate(access_token)
        if not outcome.is_valid:
            logger.debug(f"Access token validation failed: {outcome.reason}")
            raise InvalidTokenError()
        return outcome.claims

    async def validate_enhanced(self, token: str) -> TokenClaims:
        """Any accepted bearer credential: internal tokens first, then external assertions."""
        outcome = await run_validators(self.validators, token)
        if not outcome.is_valid:
            raise InvalidTokenError()
        return outcome.claims

    async def revoke(self, token: str) -> bool:
        revoked = await self.token_store.revoke(token)
        if not revoked:
            logger.info("Revocation requested for a token with no live record.")
        return revoked

    # --- Federated identities ---

    async def mint_for_external_identity(
        self,
        identity: ExternalIdentity,
        client_id: str,
        scopes: List[str],
    ) -> TokenResponse:
        """Issues a stored token pair for an identity vouched for by the external IdP."""
        token_response = await self._mint_stored_tokens(
            client_id=client_id,
            user_id=identity.subject,
            scopes=scopes,
            external_user_id=identity.subject,
            external_org_id=identity.organization_id,
        )
        logger.info(
            f"Federated tokens minted for external user '{identity.subject}' "
            f"(org '{identity.organization_id}') via client '{client_id}'."
        )
        return token_response

    async def exchange_external_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> FederatedTokenResponse:
        identity = await self.identity_bridge.exchange_code(code, client_id, client_secret, redirect_uri)
        client = await self.client_registry.lookup(client_id)
        token_response = await self.mint_for_external_identity(identity, client_id, sorted(client.scopes))
        return FederatedTokenResponse(
            **token_response.model_dump(),
            external_user=ExternalUserSummary(
                id=identity.subject,
                email=identity.email,
                name=identity.display_name,
                organization_id=identity.organization_id,
            ),
        )

    async def exchange_assertion(self, assertion: str) -> TokenResponse:
        """
        JWT bearer grant: validates the external assertion and returns a one-off
        access token. Nothing is stored and no refresh token is issued.
        """
        identity = await self.identity_bridge.validate_assertion(assertion)
        client = await self.identity_bridge.get_bearer_client()
        claims = external_assertion_claims(identity, client)

        access_token = self.token_codec.sign(
            claims.model_dump(exclude_none=True, exclude={"iat", "exp", "jti"}),
            ACCESS_TOKEN_TTL,
        )
        logger.info(
            f"Access token minted from bearer assertion for external user '{identity.subject}' "
            f"(org '{identity.organization_id}')."
        )
        return TokenResponse(
            access_token=access_token,
            token_type="Bearer",
            expires_in=ACCESS_TOKEN_LIFETIME_SECONDS,
            scope=claims.scope,
        )

    # --- Token endpoint dispatch ---

    async def handle_token_request(self, token_request: TokenRequest) -> TokenResponse:
        """
        Handles OAuth token requests for the supported grant types.

        Raises:
            UnsupportedGrantTypeError: For unsupported grant types
            InvalidRequestError: For missing required parameters
            InvalidClientError: For missing or wrong client credentials
        """
        grant_type = token_request.grant_type
        logger.info(f"Handling token request for grant_type '{grant_type}'.")

        if grant_type == JWT_BEARER_GRANT_TYPE:
            if not token_request.assertion:
                raise InvalidRequestError("JWT assertion required.")
            return await self.exchange_assertion(token_request.assertion)

        if grant_type not in ("authorization_code", "refresh_token"):
            raise UnsupportedGrantTypeError(f"Grant type '{grant_type}' is not supported.")

        if not token_request.client_id or not token_request.client_secret:
            raise InvalidClientError("Client credentials required.")

        if grant_type == "authorization_code":
            if not token_request.code or not token_request.redirect_uri:
                raise InvalidRequestError("Missing required parameters.")
            client = await self.client_registry.lookup(token_request.client_id)
            if isinstance(client, FederatedConnectedAppClient):
                return await self.exchange_external_code(
                    token_request.code,
                    token_request.client_id,
                    token_request.client_secret,
                    token_request.redirect_uri,
                )
            return await self.exchange_code(
                token_request.code,
                token_request.client_id,
                token_request.client_secret,
                token_request.redirect_uri,
            )

        if not token_request.refresh_token:
            raise InvalidRequestError("Refresh token required.")
        await self._authenticate_client(token_request.client_id, token_request.client_secret)
        return await self.refresh(token_request.refresh_token, token_request.client_id)
