# authgate/oauth/memory_stores.py
import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from ..utils.clock import Clock, utc_now
from .errors import AuthorizationCodeExpired, AuthorizationCodeNotFound
from .models import AUTH_CODE_LIFETIME_SECONDS, AuthCodeData, OAuthClient, TokenRecord, User
from .storage_interfaces import (
    AbstractAuthCodeStore,
    AbstractClientRegistry,
    AbstractTokenStore,
    AbstractUserStore,
)

logger = logging.getLogger(__name__)

# 32 random bytes -> 256 bits of entropy per code
AUTH_CODE_BYTES = 32


class InMemoryClientRegistry(AbstractClientRegistry):
    """Process-local client registry populated at startup."""

    def __init__(self):
        self._clients: Dict[str, OAuthClient] = {}
        self._lock = asyncio.Lock()

    async def register(self, client: OAuthClient) -> None:
        async with self._lock:
            if client.client_id in self._clients:
                logger.warning(f"Client '{client.client_id}' re-registered; replacing previous entry.")
            self._clients[client.client_id] = client
        logger.info(f"Registered OAuth client '{client.client_id}' (kind: {client.kind}).")

    async def lookup(self, client_id: str) -> Optional[OAuthClient]:
        async with self._lock:
            return self._clients.get(client_id)

    async def list_clients(self) -> List[OAuthClient]:
        async with self._lock:
            return list(self._clients.values())


class InMemoryUserStore(AbstractUserStore):
    """Process-local user registry populated at startup."""

    def __init__(self):
        self._users_by_id: Dict[str, User] = {}
        self._ids_by_username: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def add_user(self, user: User) -> None:
        async with self._lock:
            self._users_by_id[user.user_id] = user
            self._ids_by_username[user.username] = user.user_id
        logger.info(f"Registered user '{user.user_id}'.")

    async def find_by_username(self, username: str) -> Optional[User]:
        async with self._lock:
            user_id = self._ids_by_username.get(username)
            return self._users_by_id.get(user_id) if user_id else None

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._lock:
            return self._users_by_id.get(user_id)


class InMemoryAuthCodeStore(AbstractAuthCodeStore):
    """
    Authorization codes held in a dict guarded by a single lock.

    Every lookup removes the code, which is what makes codes single-use.
    Expired codes are only reaped when someone tries to consume them.
    """

    def __init__(self, code_lifetime_seconds: int = AUTH_CODE_LIFETIME_SECONDS, clock: Optional[Clock] = None):
        self.code_lifetime = timedelta(seconds=code_lifetime_seconds)
        self._clock = clock or utc_now
        self._codes: Dict[str, AuthCodeData] = {}
        self._lock = asyncio.Lock()

    async def issue(
        self,
        client_id: str,
        redirect_uri: str,
        user_id: str,
        scopes: Iterable[str],
    ) -> str:
        issued_at = self._clock()
        auth_code_data = AuthCodeData(
            code=secrets.token_urlsafe(AUTH_CODE_BYTES),
            client_id=client_id,
            redirect_uri=redirect_uri,
            user_id=user_id,
            scopes=list(scopes),
            issued_at=issued_at,
            expires_at=issued_at + self.code_lifetime,
        )
        async with self._lock:
            self._codes[auth_code_data.code] = auth_code_data
        logger.debug(f"Authorization code issued for client '{client_id}', user '{user_id}'.")
        return auth_code_data.code

    async def consume(self, code: str) -> AuthCodeData:
        async with self._lock:
            auth_code_data = self._codes.pop(code, None)

        if auth_code_data is None:
            raise AuthorizationCodeNotFound("Authorization code not found or already used.")
        if auth_code_data.expires_at < self._clock():
            logger.info(f"Expired authorization code for client '{auth_code_data.client_id}' discarded.")
            raise AuthorizationCodeExpired("Authorization code has expired.")
        return auth_code_data

    def __len__(self) -> int:
        return len(self._codes)


class InMemoryTokenStore(AbstractTokenStore):
    """
    Token records keyed by record ID, with indexes on both token strings.

    All mutation happens under one lock so revoke, refresh and validation
    never observe a half-updated record.
    """

    def __init__(self):
        self._records: Dict[str, TokenRecord] = {}
        self._by_access_token: Dict[str, str] = {}
        self._by_refresh_token: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def put(self, record: TokenRecord) -> str:
        async with self._lock:
            self._records[record.record_id] = record
            self._by_access_token[record.access_token] = record.record_id
            self._by_refresh_token[record.refresh_token] = record.record_id
        logger.debug(f"Token record '{record.record_id}' stored for client '{record.client_id}'.")
        return record.record_id

    async def find_by_access_token(self, access_token: str) -> Optional[TokenRecord]:
        async with self._lock:
            record_id = self._by_access_token.get(access_token)
            return self._records.get(record_id) if record_id else None

    async def find_by_refresh_token(self, refresh_token: str) -> Optional[TokenRecord]:
        async with self._lock:
            record_id = self._by_refresh_token.get(refresh_token)
            return self._records.get(record_id) if record_id else None

    async def revoke(self, token: str) -> bool:
        async with self._lock:
            record_id = self._by_access_token.get(token) or self._by_refresh_token.get(token)
            if not record_id:
                return False
            record = self._records.pop(record_id)
            self._by_access_token.pop(record.access_token, None)
            self._by_refresh_token.pop(record.refresh_token, None)
        logger.info(f"Token record '{record_id}' revoked for client '{record.client_id}'.")
        return True

    async def touch(self, record: TokenRecord, new_access_token: str, new_expiry: datetime) -> bool:
        async with self._lock:
            live_record = self._records.get(record.record_id)
            if live_record is None:
                # Revoked between lookup and refresh
                logger.warning(f"Token record '{record.record_id}' vanished before refresh could update it.")
                return False
            self._by_access_token.pop(live_record.access_token, None)
            live_record.access_token = new_access_token
            live_record.expires_at = new_expiry
            self._by_access_token[new_access_token] = live_record.record_id
        return True

    def __len__(self) -> int:
        return len(self._records)
