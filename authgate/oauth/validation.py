# authgate/oauth/validation.py
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from ..utils.clock import Clock, utc_now
from .errors import OAuthError, TokenCodecError
from .identity_bridge import FederatedIdentityBridge
from .models import (
    JWT_BEARER_GRANT_TYPE,
    ExternalIdentity,
    FederatedBearerClient,
    TokenClaims,
)
from .storage_interfaces import AbstractClientRegistry, AbstractTokenStore
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)


class ValidationOutcome(BaseModel):
    """Result of one validator strategy: verified claims, or why it declined."""
    claims: Optional[TokenClaims] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.claims is not None

    @classmethod
    def accepted(cls, claims: TokenClaims) -> "ValidationOutcome":
        return cls(claims=claims)

    @classmethod
    def rejected(cls, reason: str) -> "ValidationOutcome":
        return cls(reason=reason)


def external_assertion_claims(identity: ExternalIdentity, client: FederatedBearerClient) -> TokenClaims:
    """Claims describing an identity established through a JWT bearer assertion."""
    return TokenClaims(
        sub=identity.subject,
        client_id=client.client_id,
        type="access",
        scope=" ".join(sorted(client.scopes)),
        external_user_id=identity.subject,
        external_org_id=identity.organization_id,
        grant=JWT_BEARER_GRANT_TYPE,
    )


def _decode_internal_access_token(codec: TokenCodec, token: str) -> ValidationOutcome:
    try:
        payload = codec.verify(token)
    except TokenCodecError as e:
        return ValidationOutcome.rejected(f"{type(e).__name__}: {e}")
    try:
        claims = TokenClaims.model_validate(payload)
    except ValidationError:
        return ValidationOutcome.rejected("Token claims are incomplete.")
    if claims.type != "access":
        return ValidationOutcome.rejected(f"Token type is '{claims.type}', not 'access'.")
    return ValidationOutcome.accepted(claims)


class TokenValidator(ABC):
    """One way of recognising a bearer token presented to a protected resource."""

    name: str = "validator"

    @abstractmethod
    async def validate(self, token: str) -> ValidationOutcome:
        pass


class StoredAccessTokenValidator(TokenValidator):
    """Internal access token that still has a live record in the token store."""

    name = "stored-access-token"

    def __init__(self, token_codec: TokenCodec, token_store: AbstractTokenStore, clock: Optional[Clock] = None):
        self.token_codec = token_codec
        self.token_store = token_store
        self._clock = clock or utc_now

    async def validate(self, token: str) -> ValidationOutcome:
        outcome = _decode_internal_access_token(self.token_codec, token)
        if not outcome.is_valid:
            return outcome

        record = await self.token_store.find_by_access_token(token)
        if record is None:
            return ValidationOutcome.rejected("No live token record for this access token.")
        if record.expires_at <= self._clock():
            return ValidationOutcome.rejected("Token record has expired.")
        return outcome


class AssertionGrantTokenValidator(TokenValidator):
    """
    Internal access token minted from a JWT bearer assertion.

    These are never stored, so they can't be revoked and live for their
    embedded lifetime only. Accepted only when the named client is still a
    registered federated-bearer client.
    """

    name = "assertion-grant-token"

    def __init__(self, token_codec: TokenCodec, client_registry: AbstractClientRegistry):
        self.token_codec = token_codec
        self.client_registry = client_registry

    async def validate(self, token: str) -> ValidationOutcome:
        outcome = _decode_internal_access_token(self.token_codec, token)
        if not outcome.is_valid:
            return outcome
        if outcome.claims.grant != JWT_BEARER_GRANT_TYPE:
            return ValidationOutcome.rejected("Token was not minted from a bearer assertion.")

        client = await self.client_registry.lookup(outcome.claims.client_id)
        if not isinstance(client, FederatedBearerClient):
            return ValidationOutcome.rejected(
                f"Client '{outcome.claims.client_id}' is not a federated-bearer client."
            )
        return outcome


class ExternalAssertionValidator(TokenValidator):
    """A raw IdP-signed assertion presented directly as a bearer token."""

    name = "external-assertion"

    def __init__(self, identity_bridge: FederatedIdentityBridge):
        self.identity_bridge = identity_bridge

    async def validate(self, token: str) -> ValidationOutcome:
        try:
            client = await self.identity_bridge.get_bearer_client()
            identity = await self.identity_bridge.validate_assertion(token)
        except OAuthError as e:
            return ValidationOutcome.rejected(str(e))
        return ValidationOutcome.accepted(external_assertion_claims(identity, client))


async def run_validators(validators: List[TokenValidator], token: str) -> ValidationOutcome:
    """Try each strategy in order; the first acceptance wins."""
    reasons = []
    for validator in validators:
        outcome = await validator.validate(token)
        if outcome.is_valid:
            logger.debug(f"Token accepted by '{validator.name}' for subject '{outcome.claims.sub}'.")
            return outcome
        reasons.append(f"{validator.name}: {outcome.reason}")

    logger.debug(f"Token rejected by every validator ({'; '.join(reasons)}).")
    return ValidationOutcome.rejected("; ".join(reasons))
