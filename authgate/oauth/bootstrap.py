# authgate/oauth/bootstrap.py
import asyncio
import logging
from typing import Optional

from ..settings import ClientRegistration, Settings, UserRegistration
from .credentials import CredentialVerifierProtocol
from .identity_bridge import (
    AssertionSignatureVerifier,
    ClaimsOnlyAssertionVerifier,
    PublicKeyAssertionVerifier,
    UnconfiguredAssertionVerifier,
)
from .models import (
    FederatedBearerClient,
    FederatedConnectedAppClient,
    IdPEndpointConfig,
    StandardClient,
    User,
)
from .storage_interfaces import AbstractClientRegistry, AbstractUserStore

logger = logging.getLogger(__name__)


async def _digest_for(
    credential_verifier: CredentialVerifierProtocol,
    plaintext: Optional[str],
    digest: Optional[str],
) -> Optional[str]:
    if digest:
        return digest
    if plaintext:
        return await asyncio.to_thread(credential_verifier.hash, plaintext)
    return None


async def register_standard_client(
    registration: ClientRegistration,
    client_registry: AbstractClientRegistry,
    credential_verifier: CredentialVerifierProtocol,
) -> StandardClient:
    secret_hash = await _digest_for(
        credential_verifier, registration.client_secret, registration.client_secret_hash
    )
    if secret_hash is None:
        logger.warning(f"Client '{registration.client_id}' has no secret configured; it can never authenticate.")
    client = StandardClient(
        client_id=registration.client_id,
        client_name=registration.client_name,
        client_secret_hash=secret_hash,
        redirect_uris=frozenset(registration.redirect_uris),
        scopes=frozenset(registration.scopes),
    )
    await client_registry.register(client)
    return client


async def register_user(
    registration: UserRegistration,
    user_store: AbstractUserStore,
    credential_verifier: CredentialVerifierProtocol,
) -> Optional[User]:
    password_hash = await _digest_for(credential_verifier, registration.password, registration.password_hash)
    if password_hash is None:
        logger.error(f"User '{registration.user_id}' has neither password nor password_hash; skipped.")
        return None
    user = User(
        user_id=registration.user_id,
        username=registration.username,
        password_hash=password_hash,
        scopes=frozenset(registration.scopes),
    )
    await user_store.add_user(user)
    return user


async def register_federated_clients(
    app_settings: Settings,
    client_registry: AbstractClientRegistry,
    credential_verifier: CredentialVerifierProtocol,
) -> None:
    """
    Registers the connected-app client (external code flow) and its '<id>_jwt'
    bearer twin (assertion flow), both pointing at the configured IdP.
    """
    idp = IdPEndpointConfig(
        login_base_url=app_settings.federation_login_url,
        external_client_id=app_settings.federation_client_id,
        api_version=app_settings.federation_api_version,
    )
    secret_hash = await _digest_for(credential_verifier, app_settings.federation_client_secret, None)
    if secret_hash is None:
        logger.warning("FEDERATION_CLIENT_SECRET is not set; the federated code flow will reject every client.")

    await client_registry.register(
        FederatedConnectedAppClient(
            client_id=app_settings.federation_client_id,
            client_name="External IdP Connected App",
            client_secret_hash=secret_hash,
            redirect_uris=frozenset([app_settings.federation_redirect_uri]),
            scopes=frozenset(app_settings.federation_scopes),
            idp=idp,
        )
    )
    await client_registry.register(
        FederatedBearerClient(
            client_id=app_settings.federation_bearer_client_id,
            client_name="External IdP JWT Bearer",
            scopes=frozenset(app_settings.federation_scopes),
            idp=idp,
        )
    )


async def populate_registries(
    app_settings: Settings,
    client_registry: AbstractClientRegistry,
    user_store: AbstractUserStore,
    credential_verifier: CredentialVerifierProtocol,
) -> None:
    """Fill the client registry and user store from configuration at startup."""
    for client_registration in app_settings.oauth_clients:
        await register_standard_client(client_registration, client_registry, credential_verifier)
    for user_registration in app_settings.oauth_users:
        await register_user(user_registration, user_store, credential_verifier)
    if app_settings.federation_enabled:
        await register_federated_clients(app_settings, client_registry, credential_verifier)
    else:
        logger.info("Federation disabled (FEDERATION_CLIENT_ID not set).")


def build_assertion_verifier(app_settings: Settings) -> AssertionSignatureVerifier:
    mode = app_settings.federation_assertion_verification
    if mode == "public_key":
        if not app_settings.federation_assertion_public_key_path:
            raise RuntimeError(
                "FEDERATION_ASSERTION_VERIFICATION=public_key requires FEDERATION_ASSERTION_PUBLIC_KEY_PATH."
            )
        return PublicKeyAssertionVerifier.from_file(app_settings.federation_assertion_public_key_path)
    if mode == "claims_only":
        logger.warning("JWT bearer assertions will be accepted WITHOUT signature verification.")
        return ClaimsOnlyAssertionVerifier()
    return UnconfiguredAssertionVerifier()
