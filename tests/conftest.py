# tests/conftest.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from authgate.oauth.credentials import BcryptCredentialVerifier
from authgate.oauth.identity_bridge import FederatedIdentityBridge, PublicKeyAssertionVerifier
from authgate.oauth.memory_stores import (
    InMemoryAuthCodeStore, InMemoryClientRegistry, InMemoryTokenStore, InMemoryUserStore
)
from authgate.oauth.models import (
    FederatedBearerClient, FederatedConnectedAppClient, IdPEndpointConfig, StandardClient, User
)
from authgate.oauth.provider import AuthorizationServer
from authgate.oauth.token_codec import TokenCodec

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
)

TEST_JWT_SECRET = "test-signing-secret-for-authgate-unit-tests-0123456789"

CLIENT_ID = "c1"
CLIENT_SECRET = "c1-secret"
CLIENT_REDIRECT_URI = "https://app/cb"

USERNAME = "alice@example.com"
PASSWORD = "wonderland"
USER_ID = "user-1"

LOGIN_URL = "https://login.example.com"
FEDERATED_CLIENT_ID = "sf-connected-app"
FEDERATED_CLIENT_SECRET = "sf-secret"
FEDERATED_REDIRECT_URI = "https://app/sf/callback"
BEARER_CLIENT_ID = f"{FEDERATED_CLIENT_ID}_jwt"
FEDERATED_SCOPES = frozenset({"email:validate", "api"})
INSTANCE_URL = "https://acme.my.example.com"

EXTERNAL_USER_ID = "005xx000001Sv6AAAS"
EXTERNAL_ORG_ID = "00Dxx0000001gPLEAY"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeIdP:
    """
    httpx.MockTransport handler standing in for the external IdP's token and
    userinfo endpoints. Tests tweak the status/body fields to script failures.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.token_status = 200
        self.token_body: Dict[str, Any] = {
            "access_token": "external-access-token",
            "instance_url": INSTANCE_URL,
            "token_type": "Bearer",
        }
        self.token_exception: Optional[Exception] = None
        self.userinfo_status = 200
        self.userinfo_body: Dict[str, Any] = {
            "user_id": EXTERNAL_USER_ID,
            "organization_id": EXTERNAL_ORG_ID,
            "email": "ext.user@acme.example.com",
            "name": "External User",
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/services/oauth2/token"):
            if self.token_exception is not None:
                raise self.token_exception
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path.endswith("/services/oauth2/userinfo"):
            return httpx.Response(self.userinfo_status, json=self.userinfo_body)
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(scope="session")
def credential_verifier() -> BcryptCredentialVerifier:
    # Minimum bcrypt cost keeps the suite fast
    return BcryptCredentialVerifier(rounds=4)


@pytest.fixture
def token_codec(clock) -> TokenCodec:
    return TokenCodec(TEST_JWT_SECRET, clock=clock)


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key) -> str:
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


@pytest.fixture
def make_assertion(rsa_private_key, clock) -> Callable[..., str]:
    """Builds an RS256 assertion as the IdP would issue it; keyword args override claims."""

    def _make(signing_key=None, algorithm: str = "RS256", **overrides) -> str:
        claims = {
            "iss": LOGIN_URL,
            "aud": FEDERATED_CLIENT_ID,
            "sub": EXTERNAL_USER_ID,
            "organization_id": EXTERNAL_ORG_ID,
            "exp": int((clock() + timedelta(minutes=5)).timestamp()),
        }
        claims.update(overrides)
        claims = {key: value for key, value in claims.items() if value is not None}
        return jwt.encode(claims, signing_key or rsa_private_key, algorithm=algorithm)

    return _make


@pytest.fixture
def idp_config() -> IdPEndpointConfig:
    return IdPEndpointConfig(login_base_url=LOGIN_URL, external_client_id=FEDERATED_CLIENT_ID)


@pytest_asyncio.fixture
async def client_registry(credential_verifier, idp_config) -> InMemoryClientRegistry:
    registry = InMemoryClientRegistry()
    await registry.register(StandardClient(
        client_id=CLIENT_ID,
        client_name="Test App",
        client_secret_hash=credential_verifier.hash(CLIENT_SECRET),
        redirect_uris=frozenset({CLIENT_REDIRECT_URI}),
        scopes=frozenset({"read"}),
    ))
    await registry.register(FederatedConnectedAppClient(
        client_id=FEDERATED_CLIENT_ID,
        client_name="Connected App",
        client_secret_hash=credential_verifier.hash(FEDERATED_CLIENT_SECRET),
        redirect_uris=frozenset({FEDERATED_REDIRECT_URI}),
        scopes=FEDERATED_SCOPES,
        idp=idp_config,
    ))
    await registry.register(FederatedBearerClient(
        client_id=BEARER_CLIENT_ID,
        client_name="JWT Bearer",
        scopes=FEDERATED_SCOPES,
        idp=idp_config,
    ))
    return registry


@pytest_asyncio.fixture
async def user_store(credential_verifier) -> InMemoryUserStore:
    store = InMemoryUserStore()
    await store.add_user(User(
        user_id=USER_ID,
        username=USERNAME,
        password_hash=credential_verifier.hash(PASSWORD),
        scopes=frozenset({"read"}),
    ))
    return store


@pytest.fixture
def fake_idp() -> FakeIdP:
    return FakeIdP()


@pytest_asyncio.fixture
async def http_client(fake_idp):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_idp)) as client:
        yield client


@pytest.fixture
def assertion_verifier(rsa_public_pem) -> PublicKeyAssertionVerifier:
    return PublicKeyAssertionVerifier(rsa_public_pem)


@pytest.fixture
def identity_bridge(client_registry, credential_verifier, assertion_verifier, http_client, clock):
    return FederatedIdentityBridge(
        client_registry=client_registry,
        credential_verifier=credential_verifier,
        assertion_verifier=assertion_verifier,
        http_client=http_client,
        bearer_client_id=BEARER_CLIENT_ID,
        clock=clock,
    )


@pytest.fixture
def auth_code_store(clock) -> InMemoryAuthCodeStore:
    return InMemoryAuthCodeStore(clock=clock)


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def server(
    client_registry, user_store, auth_code_store, token_store,
    token_codec, credential_verifier, identity_bridge, clock,
) -> AuthorizationServer:
    return AuthorizationServer(
        client_registry=client_registry,
        user_store=user_store,
        auth_code_store=auth_code_store,
        token_store=token_store,
        token_codec=token_codec,
        credential_verifier=credential_verifier,
        identity_bridge=identity_bridge,
        clock=clock,
    )


@pytest_asyncio.fixture
async def issued_tokens(server):
    """A token pair for c1/user-1 obtained through the full code flow."""
    _client, scopes = await server.validate_authorization_request(CLIENT_ID, CLIENT_REDIRECT_URI, "code", "read")
    user_id = await server.authenticate_user(USERNAME, PASSWORD)
    code = await server.issue_code(CLIENT_ID, CLIENT_REDIRECT_URI, user_id, scopes)
    return await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)
