# authgate/oauth/identity_bridge.py
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import httpx
import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ..utils.clock import Clock, utc_now
from .credentials import CredentialVerifierProtocol
from .errors import InvalidClientError, InvalidGrantError, ServerError
from .models import (
    ExternalIdentity,
    FederatedBearerClient,
    FederatedConnectedAppClient,
    IdPEndpointConfig,
)
from .storage_interfaces import AbstractClientRegistry

logger = logging.getLogger(__name__)

# Claims checked by the bridge itself, against the bridge's clock
_DEFERRED_CLAIM_CHECKS = {
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_aud": False,
    "verify_iss": False,
}


# --- Assertion signature verification ---

class AssertionSignatureVerifier(ABC):
    """
    Decodes an external JWT bearer assertion, establishing (or explicitly not
    establishing) that the IdP signed it.

    The bridge refuses to run without one, so deployments have to choose.
    """

    @abstractmethod
    def decode(self, assertion: str) -> Dict[str, Any]:
        """Return the assertion's claims or raise InvalidGrantError."""
        pass


class PublicKeyAssertionVerifier(AssertionSignatureVerifier):
    """Verifies assertions against the IdP's published certificate or public key."""

    def __init__(self, pem_data: str, algorithms: Iterable[str] = ("RS256",)):
        self._public_key = self._load_public_key(pem_data)
        self._algorithms = list(algorithms)

    @classmethod
    def from_file(cls, path: str, algorithms: Iterable[str] = ("RS256",)) -> "PublicKeyAssertionVerifier":
        key_path = Path(path)
        if not key_path.exists():
            raise FileNotFoundError(f"Assertion verification key not found at {key_path}")
        return cls(key_path.read_text(), algorithms)

    @staticmethod
    def _load_public_key(pem_data: str):
        try:
            cert = x509.load_pem_x509_certificate(pem_data.encode("utf-8"))
            return cert.public_key()
        except ValueError:
            return serialization.load_pem_public_key(pem_data.encode("utf-8"))

    def decode(self, assertion: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                assertion,
                self._public_key,
                algorithms=self._algorithms,
                options=_DEFERRED_CLAIM_CHECKS,
            )
        except jwt.InvalidSignatureError:
            logger.warning("External assertion signature did not verify.")
            raise InvalidGrantError("Assertion signature is invalid.")
        except jwt.InvalidTokenError as e:
            logger.warning(f"External assertion could not be decoded: {e}")
            raise InvalidGrantError("Assertion is malformed.")


class ClaimsOnlyAssertionVerifier(AssertionSignatureVerifier):
    """
    Decodes assertion claims WITHOUT checking the signature.

    Only issuer, audience and expiry are then enforced, so anyone able to craft
    a JWT with the right iss/aud is accepted. Must be selected explicitly.
    """

    def decode(self, assertion: str) -> Dict[str, Any]:
        logger.warning("Accepting external assertion without signature verification (claims_only mode).")
        try:
            return jwt.decode(assertion, options={"verify_signature": False, **_DEFERRED_CLAIM_CHECKS})
        except jwt.InvalidTokenError as e:
            logger.warning(f"External assertion could not be decoded: {e}")
            raise InvalidGrantError("Assertion is malformed.")


class UnconfiguredAssertionVerifier(AssertionSignatureVerifier):
    """Placeholder used when no verification mode was configured. Fails closed."""

    def decode(self, assertion: str) -> Dict[str, Any]:
        logger.error(
            "JWT bearer assertion received but no assertion verification mode is configured. "
            "Set FEDERATION_ASSERTION_VERIFICATION to 'public_key' or 'claims_only'."
        )
        raise ServerError("External assertion verification is not configured.")


# --- Bridge ---

class FederatedIdentityBridge:
    """
    Drives the external IdP's authorization-code and JWT bearer flows and
    returns the external identity for the authorization server to re-mint.

    Outbound HTTP goes through the injected httpx.AsyncClient; its timeout
    bounds how long an unresponsive IdP can hold up a request.
    """

    def __init__(
        self,
        client_registry: AbstractClientRegistry,
        credential_verifier: CredentialVerifierProtocol,
        assertion_verifier: AssertionSignatureVerifier,
        http_client: httpx.AsyncClient,
        bearer_client_id: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.client_registry = client_registry
        self.credential_verifier = credential_verifier
        self.assertion_verifier = assertion_verifier
        self.http_client = http_client
        self.bearer_client_id = bearer_client_id
        self._clock = clock or utc_now
        logger.info(
            f"FederatedIdentityBridge initialized with {type(assertion_verifier).__name__}; "
            f"bearer client: {bearer_client_id or 'none'}."
        )

    # Authorization-code bridge

    def build_authorization_url(
        self,
        client: FederatedConnectedAppClient,
        redirect_uri: str,
        scopes: List[str],
        state: Optional[str] = None,
    ) -> str:
        """URL that sends the user agent to the IdP's login page."""
        params = {
            "response_type": "code",
            "client_id": client.idp.external_client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
        }
        if state:
            params["state"] = state
        return f"{client.idp.authorize_url}?{urlencode(params)}"

    async def authenticate_connected_app(self, client_id: str, client_secret: str) -> FederatedConnectedAppClient:
        client = await self.client_registry.lookup(client_id)
        if not isinstance(client, FederatedConnectedAppClient):
            await self.credential_verifier.verify_async(client_secret, self.credential_verifier.dummy_digest)
            logger.warning(f"Client '{client_id}' is not a federated connected app.")
            raise InvalidClientError()
        if not await self.credential_verifier.verify_async(client_secret, client.client_secret_hash or ""):
            logger.warning(f"Client secret mismatch for federated client '{client_id}'.")
            raise InvalidClientError()
        return client

    async def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
    ) -> ExternalIdentity:
        """
        Trade an external authorization code for the IdP user's identity.

        Raises:
            InvalidClientError: client is not a connected app or the secret is wrong
            InvalidGrantError: the IdP rejected the code
            ServerError: the IdP was unreachable or answered nonsense
        """
        client = await self.authenticate_connected_app(client_id, client_secret)
        if redirect_uri not in client.redirect_uris:
            logger.warning(f"Redirect URI '{redirect_uri}' not registered for federated client '{client_id}'.")
            raise InvalidGrantError("Redirect URI mismatch.")

        token_data = await self._request_external_tokens(client.idp, code, client_secret, redirect_uri)
        external_access_token = token_data.get("access_token")
        if not external_access_token:
            logger.error("External token response did not include an access_token.")
            raise ServerError("External identity provider returned no access token.")
        instance_url = token_data.get("instance_url") or client.idp.login_base_url

        return await self._fetch_user_info(client.idp, external_access_token, instance_url)

    async def _request_external_tokens(
        self,
        idp: IdPEndpointConfig,
        code: str,
        client_secret: str,
        redirect_uri: str,
    ) -> Dict[str, Any]:
        token_request_data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": idp.external_client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
        }
        try:
            response = await self.http_client.post(
                idp.token_url,
                data=token_request_data,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e_http:
            status_code = e_http.response.status_code
            logger.error(f"External token endpoint returned {status_code}: {e_http.response.text!r}")
            if status_code in (400, 401):
                raise InvalidGrantError("External authorization code was rejected.")
            raise ServerError("External identity provider failed during code exchange.")
        except httpx.TimeoutException:
            logger.error(f"Timed out calling external token endpoint {idp.token_url}.")
            raise ServerError("External identity provider timed out.")
        except httpx.HTTPError as e:
            logger.error(f"Could not reach external token endpoint {idp.token_url}: {e}")
            raise ServerError("External identity provider is unreachable.")
        except ValueError:
            logger.error("External token endpoint returned a non-JSON body.")
            raise ServerError("External identity provider returned an unreadable token response.")

    async def _fetch_user_info(
        self,
        idp: IdPEndpointConfig,
        external_access_token: str,
        instance_url: str,
    ) -> ExternalIdentity:
        userinfo_url = f"{instance_url.rstrip('/')}{idp.userinfo_path}"
        try:
            response = await self.http_client.get(
                userinfo_url,
                headers={
                    "Authorization": f"Bearer {external_access_token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            user_info = response.json()
        except httpx.HTTPStatusError as e_http:
            logger.error(f"External userinfo endpoint returned {e_http.response.status_code}.")
            raise ServerError("Could not fetch user info from the external identity provider.")
        except httpx.TimeoutException:
            logger.error(f"Timed out calling external userinfo endpoint {userinfo_url}.")
            raise ServerError("External identity provider timed out.")
        except httpx.HTTPError as e:
            logger.error(f"Could not reach external userinfo endpoint {userinfo_url}: {e}")
            raise ServerError("External identity provider is unreachable.")
        except ValueError:
            logger.error("External userinfo endpoint returned a non-JSON body.")
            raise ServerError("External identity provider returned unreadable user info.")

        subject = user_info.get("user_id") or user_info.get("sub")
        if not subject:
            logger.error("External user info did not include a user id.")
            raise ServerError("External identity provider returned no user id.")

        return ExternalIdentity(
            subject=subject,
            email=user_info.get("email"),
            display_name=user_info.get("name"),
            organization_id=user_info.get("organization_id"),
            instance_url=instance_url,
            api_base_url=f"{instance_url.rstrip('/')}/services/data/{idp.api_version}",
        )

    # Bearer-assertion bridge

    async def get_bearer_client(self) -> FederatedBearerClient:
        if not self.bearer_client_id:
            raise InvalidGrantError("JWT bearer assertions are not enabled.")
        client = await self.client_registry.lookup(self.bearer_client_id)
        if not isinstance(client, FederatedBearerClient):
            logger.error(f"Configured bearer client '{self.bearer_client_id}' is missing or not federated-bearer.")
            raise ServerError("JWT bearer client is misconfigured.")
        return client

    async def validate_assertion(self, assertion: str) -> ExternalIdentity:
        """
        Validate an IdP-issued JWT bearer assertion.

        Signature handling is delegated to the configured AssertionSignatureVerifier;
        issuer, audience and expiry are checked here.
        """
        client = await self.get_bearer_client()
        claims = self.assertion_verifier.decode(assertion)

        if claims.get("iss") != client.idp.login_base_url:
            logger.warning(f"Assertion issuer '{claims.get('iss')}' does not match '{client.idp.login_base_url}'.")
            raise InvalidGrantError("Invalid assertion issuer.")

        audience = claims.get("aud")
        if isinstance(audience, str):
            audiences = [audience]
        elif isinstance(audience, list) and all(isinstance(aud, str) for aud in audience):
            audiences = audience
        else:
            logger.warning(f"Assertion audience has unexpected type {type(audience).__name__}.")
            raise InvalidGrantError("Invalid assertion audience.")
        if client.idp.external_client_id not in audiences:
            logger.warning("Assertion audience does not include the configured external client id.")
            raise InvalidGrantError("Invalid assertion audience.")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            logger.info("Expired or exp-less external assertion rejected.")
            raise InvalidGrantError("Assertion has expired.")

        subject = claims.get("sub")
        if not subject or not isinstance(subject, str):
            raise InvalidGrantError("Assertion has no subject.")

        for claim_name in ("email", "organization_id"):
            value = claims.get(claim_name)
            if value is not None and not isinstance(value, str):
                logger.warning(f"Assertion claim '{claim_name}' is not a string.")
                raise InvalidGrantError(f"Invalid assertion claim '{claim_name}'.")

        return ExternalIdentity(
            subject=subject,
            email=claims.get("email"),
            organization_id=claims.get("organization_id"),
        )
