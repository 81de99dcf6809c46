# authgate/oauth/credentials.py
import asyncio
import logging
from abc import ABC, abstractmethod

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_INPUT_BYTES = 72
DEFAULT_BCRYPT_ROUNDS = 12


class CredentialVerifierProtocol(ABC):
    """Interface for hashing and checking user passwords and client secrets."""

    @abstractmethod
    def hash(self, secret: str) -> str:
        """Create a salted, non-reversible digest of the secret."""
        pass

    @abstractmethod
    def verify(self, secret: str, digest: str) -> bool:
        """Check a secret against a stored digest."""
        pass

    @property
    @abstractmethod
    def dummy_digest(self) -> str:
        """Digest to compare against when the account does not exist."""
        pass

    async def verify_async(self, secret: str, digest: str) -> bool:
        """Run verify() off the event loop."""
        return await asyncio.to_thread(self.verify, secret, digest)


class BcryptCredentialVerifier(CredentialVerifierProtocol):
    """
    Bcrypt-backed verifier used identically for user passwords and client secrets.

    A malformed digest verifies as False rather than raising, so callers only
    ever see "matches" or "does not match".
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS):
        self.rounds = rounds
        # Compared against when the account does not exist, so a miss costs
        # the same as a wrong password.
        self._dummy_digest = self.hash("authgate-dummy-secret")

    @staticmethod
    def _encode(secret: str) -> bytes:
        return secret.encode("utf-8")[:BCRYPT_MAX_INPUT_BYTES]

    def hash(self, secret: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(self._encode(secret), salt).decode("utf-8")

    def verify(self, secret: str, digest: str) -> bool:
        if not digest:
            return False
        try:
            return bcrypt.checkpw(self._encode(secret), digest.encode("utf-8"))
        except ValueError:
            logger.error("Stored credential digest is not a valid bcrypt hash.")
            return False

    @property
    def dummy_digest(self) -> str:
        return self._dummy_digest
