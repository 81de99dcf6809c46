# authgate/oauth/token_codec.py
import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt

from ..utils.clock import Clock, utc_now
from .errors import TokenExpired, TokenMalformed, TokenSignatureInvalid

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "sub"]


class TokenCodec:
    """
    Signs and verifies self-contained bearer tokens (HS256 JWTs).

    Stateless: the signing secret is process configuration handed in at
    construction. Expiry is enforced against the injected clock instead of
    PyJWT's wall-clock check so every component agrees on "now".
    """

    def __init__(self, secret: str, algorithm: str = "HS256", clock: Optional[Clock] = None):
        if not secret:
            raise ValueError("A signing secret is required for the token codec.")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock or utc_now

    def sign(self, claims: Dict[str, Any], ttl: timedelta) -> str:
        """Embed iat/exp/jti into the claims and sign them."""
        issued_at = self._clock()
        payload = dict(claims)
        payload["iat"] = int(issued_at.timestamp())
        payload["exp"] = int((issued_at + ttl).timestamp())
        payload.setdefault("jti", uuid4().hex)
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and check a token.

        Raises:
            TokenSignatureInvalid: signature does not match the secret
            TokenMalformed: not a JWT, wrong algorithm, or missing claims
            TokenExpired: exp is at or before the current time
        """
        if not token or not isinstance(token, str):
            raise TokenMalformed("Empty token.")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise TokenSignatureInvalid(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise TokenMalformed(str(e)) from e

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise TokenMalformed("Token 'exp' claim is not numeric.")
        if exp <= self._clock().timestamp():
            raise TokenExpired("Token has expired.")
        return payload
