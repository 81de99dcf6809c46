# authgate/oauth/storage_interfaces.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .models import AuthCodeData, OAuthClient, TokenRecord, User

logger = logging.getLogger(__name__)


class AbstractClientRegistry(ABC):
    """Read-mostly registry of OAuth client applications."""

    @abstractmethod
    async def register(self, client: OAuthClient) -> None:
        """Add a client during bootstrap."""
        pass

    @abstractmethod
    async def lookup(self, client_id: str) -> Optional[OAuthClient]:
        """Retrieve a client by client ID."""
        pass

    @abstractmethod
    async def list_clients(self) -> List[OAuthClient]:
        """Retrieve every registered client."""
        pass


class AbstractUserStore(ABC):
    """Registry of resource owners allowed to log in."""

    @abstractmethod
    async def add_user(self, user: User) -> None:
        """Add a user during bootstrap."""
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[User]:
        """Retrieve a user by login name."""
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Retrieve a user by internal ID."""
        pass


class AbstractAuthCodeStore(ABC):
    """Short-lived, single-use authorization codes."""

    @abstractmethod
    async def issue(
        self,
        client_id: str,
        redirect_uri: str,
        user_id: str,
        scopes: Iterable[str],
    ) -> str:
        """Generate and remember a fresh code; returns the code string."""
        pass

    @abstractmethod
    async def consume(self, code: str) -> AuthCodeData:
        """
        Atomically remove and return a code's data.

        Raises:
            AuthorizationCodeNotFound: never issued or already consumed
            AuthorizationCodeExpired: present but past its expiry (deleted)
        """
        pass


class AbstractTokenStore(ABC):
    """Live state of issued token pairs, used for revocation and refresh."""

    @abstractmethod
    async def put(self, record: TokenRecord) -> str:
        """Store a fresh record; returns its record ID."""
        pass

    @abstractmethod
    async def find_by_access_token(self, access_token: str) -> Optional[TokenRecord]:
        """Retrieve the record currently holding this access token."""
        pass

    @abstractmethod
    async def find_by_refresh_token(self, refresh_token: str) -> Optional[TokenRecord]:
        """Retrieve the record holding this refresh token."""
        pass

    @abstractmethod
    async def revoke(self, token: str) -> bool:
        """Delete the record matching either token half. True if one was found."""
        pass

    @abstractmethod
    async def touch(self, record: TokenRecord, new_access_token: str, new_expiry: datetime) -> bool:
        """
        Swap in a new access token and expiry, keeping record ID and refresh token.
        Returns False if the record was revoked in the meantime.
        """
        pass
