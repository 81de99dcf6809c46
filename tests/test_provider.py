# tests/test_provider.py
from datetime import timedelta

import pytest

from authgate.oauth.errors import (
    AccessDeniedError, InvalidClientError, InvalidGrantError, InvalidRequestError,
    InvalidScopeError, InvalidTokenError, UnsupportedGrantTypeError, UnsupportedResponseTypeError,
)
from authgate.oauth.models import TokenRecord, TokenRequest

from .conftest import (
    CLIENT_ID, CLIENT_REDIRECT_URI, CLIENT_SECRET, PASSWORD, USER_ID, USERNAME,
)


async def _issue_code(server, scope: str = "read") -> str:
    _client, scopes = await server.validate_authorization_request(CLIENT_ID, CLIENT_REDIRECT_URI, "code", scope)
    user_id = await server.authenticate_user(USERNAME, PASSWORD)
    return await server.issue_code(CLIENT_ID, CLIENT_REDIRECT_URI, user_id, scopes)


# --- Resource owner login ---

@pytest.mark.asyncio
async def test_authenticate_user_returns_user_id(server):
    assert await server.authenticate_user(USERNAME, PASSWORD) == USER_ID


@pytest.mark.asyncio
@pytest.mark.parametrize("username,password", [(USERNAME, "wrong"), ("nobody@example.com", PASSWORD)])
async def test_bad_credentials_are_indistinguishable(server, username, password):
    with pytest.raises(AccessDeniedError) as exc_info:
        await server.authenticate_user(username, password)
    assert exc_info.value.error_description == "Invalid credentials."


# --- Authorization request checks ---

@pytest.mark.asyncio
async def test_requested_scopes_are_narrowed_to_client_scopes(server):
    client, scopes = await server.validate_authorization_request(
        CLIENT_ID, CLIENT_REDIRECT_URI, "code", "read write read"
    )
    assert client.client_id == CLIENT_ID
    assert scopes == ["read"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client_id,redirect_uri,response_type,scope,expected",
    [
        (None, CLIENT_REDIRECT_URI, "code", "read", InvalidRequestError),
        (CLIENT_ID, CLIENT_REDIRECT_URI, "code", None, InvalidRequestError),
        (CLIENT_ID, CLIENT_REDIRECT_URI, "token", "read", UnsupportedResponseTypeError),
        ("unknown", CLIENT_REDIRECT_URI, "code", "read", InvalidClientError),
        (CLIENT_ID, CLIENT_REDIRECT_URI + "/", "code", "read", InvalidRequestError),
        (CLIENT_ID, "https://evil/cb", "code", "read", InvalidRequestError),
        (CLIENT_ID, CLIENT_REDIRECT_URI, "code", "write admin", InvalidScopeError),
    ],
)
async def test_invalid_authorization_requests(server, client_id, redirect_uri, response_type, scope, expected):
    with pytest.raises(expected):
        await server.validate_authorization_request(client_id, redirect_uri, response_type, scope)


@pytest.mark.asyncio
async def test_issue_code_rechecks_preconditions(server):
    with pytest.raises(InvalidScopeError):
        await server.issue_code(CLIENT_ID, CLIENT_REDIRECT_URI, USER_ID, ["read", "write"])
    with pytest.raises(InvalidRequestError):
        await server.issue_code(CLIENT_ID, "https://evil/cb", USER_ID, ["read"])
    with pytest.raises(InvalidClientError):
        await server.issue_code("unknown", CLIENT_REDIRECT_URI, USER_ID, ["read"])


def test_build_code_redirect(server):
    assert server.build_code_redirect("https://app/cb", "abc", "xyz") == "https://app/cb?code=abc&state=xyz"
    assert server.build_code_redirect("https://app/cb?x=1", "abc") == "https://app/cb?x=1&code=abc"


# --- Code exchange ---

@pytest.mark.asyncio
async def test_narrowed_scope_flows_into_token_and_code_is_single_use(server):
    code = await _issue_code(server, scope="read write")

    response = await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)
    assert response.scope == "read"
    assert response.token_type == "Bearer"
    assert response.expires_in == 900
    assert response.refresh_token

    with pytest.raises(InvalidGrantError):
        await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)


@pytest.mark.asyncio
async def test_code_used_after_ten_minutes_fails(server, clock):
    code = await _issue_code(server)
    clock.advance(minutes=10, seconds=1)

    with pytest.raises(InvalidGrantError):
        await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)


@pytest.mark.asyncio
@pytest.mark.parametrize("code_is_valid", [True, False])
async def test_bad_client_secret_is_invalid_client_regardless_of_code(server, code_is_valid):
    code = await _issue_code(server) if code_is_valid else "never-issued"

    with pytest.raises(InvalidClientError):
        await server.exchange_code(code, CLIENT_ID, "wrong-secret", CLIENT_REDIRECT_URI)


@pytest.mark.asyncio
async def test_failed_client_authentication_does_not_burn_the_code(server):
    code = await _issue_code(server)
    with pytest.raises(InvalidClientError):
        await server.exchange_code(code, CLIENT_ID, "wrong-secret", CLIENT_REDIRECT_URI)

    response = await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)
    assert response.access_token


@pytest.mark.asyncio
async def test_redirect_mismatch_burns_the_code(server):
    code = await _issue_code(server)
    with pytest.raises(InvalidGrantError):
        await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, "https://app/other")

    with pytest.raises(InvalidGrantError):
        await server.exchange_code(code, CLIENT_ID, CLIENT_SECRET, CLIENT_REDIRECT_URI)


# --- Validation ---

@pytest.mark.asyncio
async def test_validate_returns_original_claims(server, issued_tokens):
    claims = await server.validate(issued_tokens.access_token)

    assert claims.sub == USER_ID
    assert claims.client_id == CLIENT_ID
    assert claims.scopes == ["read"]
    assert claims.type == "access"


@pytest.mark.asyncio
async def test_access_token_fails_after_expires_in(server, issued_tokens, clock):
    clock.advance(seconds=issued_tokens.expires_in + 1)

    with pytest.raises(InvalidTokenError):
        await server.validate(issued_tokens.access_token)


@pytest.mark.asyncio
async def test_refresh_token_is_not_an_access_token(server, issued_tokens):
    with pytest.raises(InvalidTokenError):
        await server.validate(issued_tokens.refresh_token)


@pytest.mark.asyncio
@pytest.mark.parametrize("garbage", ["", "garbage", "a.b.c", "Bearer xyz"])
async def test_validate_enhanced_rejects_garbage(server, garbage):
    with pytest.raises(InvalidTokenError):
        await server.validate_enhanced(garbage)


@pytest.mark.asyncio
async def test_validate_enhanced_accepts_live_internal_token(server, issued_tokens):
    claims = await server.validate_enhanced(issued_tokens.access_token)

    assert (claims.sub, claims.client_id, claims.scopes) == (USER_ID, CLIENT_ID, ["read"])
    assert claims.grant is None


# --- Refresh ---

@pytest.mark.asyncio
async def test_refresh_issues_new_access_token_and_keeps_refresh_token(server, issued_tokens, clock):
    clock.advance(minutes=5)
    refreshed = await server.refresh(issued_tokens.refresh_token, CLIENT_ID)

    assert refreshed.refresh_token == issued_tokens.refresh_token
    assert refreshed.access_token != issued_tokens.access_token
    assert refreshed.scope == "read"

    with pytest.raises(InvalidTokenError):
        await server.validate(issued_tokens.access_token)
    assert (await server.validate(refreshed.access_token)).sub == USER_ID


@pytest.mark.asyncio
async def test_refresh_extends_access_lifetime(server, issued_tokens, clock):
    clock.advance(minutes=14)
    refreshed = await server.refresh(issued_tokens.refresh_token)

    clock.advance(minutes=14)
    assert (await server.validate(refreshed.access_token)).client_id == CLIENT_ID


@pytest.mark.asyncio
async def test_refresh_uses_stored_scopes_not_token_claims(server, token_store, token_codec, clock):
    # Refresh token carries broader scope than the record it belongs to
    refresh_token = token_codec.sign(
        {"sub": USER_ID, "client_id": CLIENT_ID, "scope": "read admin", "type": "refresh"},
        timedelta(days=7),
    )
    access_token = token_codec.sign(
        {"sub": USER_ID, "client_id": CLIENT_ID, "scope": "read", "type": "access"},
        timedelta(minutes=15),
    )
    await token_store.put(TokenRecord(
        access_token=access_token,
        refresh_token=refresh_token,
        client_id=CLIENT_ID,
        user_id=USER_ID,
        scopes=["read"],
        expires_at=clock() + timedelta(minutes=15),
    ))

    refreshed = await server.refresh(refresh_token)

    assert refreshed.scope == "read"
    assert (await server.validate(refreshed.access_token)).scopes == ["read"]


@pytest.mark.asyncio
async def test_refresh_rejects_access_tokens_and_foreign_clients(server, issued_tokens):
    with pytest.raises(InvalidGrantError):
        await server.refresh(issued_tokens.access_token)
    with pytest.raises(InvalidGrantError):
        await server.refresh(issued_tokens.refresh_token, client_id="someone-else")
    with pytest.raises(InvalidGrantError):
        await server.refresh("garbage")


# --- Revocation ---

@pytest.mark.asyncio
async def test_revoking_access_token_kills_refresh_too(server, issued_tokens):
    assert await server.revoke(issued_tokens.access_token) is True

    with pytest.raises(InvalidTokenError):
        await server.validate(issued_tokens.access_token)
    with pytest.raises(InvalidGrantError):
        await server.refresh(issued_tokens.refresh_token)


@pytest.mark.asyncio
async def test_revoking_refresh_token_kills_access_too(server, issued_tokens):
    assert await server.revoke(issued_tokens.refresh_token) is True

    with pytest.raises(InvalidTokenError):
        await server.validate_enhanced(issued_tokens.access_token)


@pytest.mark.asyncio
async def test_revoking_twice_reports_not_found(server, issued_tokens):
    assert await server.revoke(issued_tokens.access_token) is True
    assert await server.revoke(issued_tokens.access_token) is False


# --- Token endpoint dispatch ---

@pytest.mark.asyncio
async def test_dispatch_authorization_code_and_refresh(server):
    code = await _issue_code(server)
    response = await server.handle_token_request(TokenRequest(
        grant_type="authorization_code", code=code, redirect_uri=CLIENT_REDIRECT_URI,
        client_id=CLIENT_ID, client_secret=CLIENT_SECRET,
    ))
    refreshed = await server.handle_token_request(TokenRequest(
        grant_type="refresh_token", refresh_token=response.refresh_token,
        client_id=CLIENT_ID, client_secret=CLIENT_SECRET,
    ))
    assert refreshed.refresh_token == response.refresh_token


@pytest.mark.asyncio
async def test_dispatch_errors(server, issued_tokens):
    with pytest.raises(UnsupportedGrantTypeError):
        await server.handle_token_request(TokenRequest(grant_type="password"))
    with pytest.raises(InvalidClientError):
        await server.handle_token_request(TokenRequest(grant_type="authorization_code", code="x"))
    with pytest.raises(InvalidRequestError):
        await server.handle_token_request(TokenRequest(
            grant_type="authorization_code", client_id=CLIENT_ID, client_secret=CLIENT_SECRET,
        ))
    with pytest.raises(InvalidClientError):
        await server.handle_token_request(TokenRequest(
            grant_type="refresh_token", refresh_token=issued_tokens.refresh_token,
            client_id=CLIENT_ID, client_secret="wrong",
        ))
    with pytest.raises(InvalidRequestError):
        await server.handle_token_request(TokenRequest(
            grant_type="urn:ietf:params:oauth:grant-type:jwt-bearer"
        ))
