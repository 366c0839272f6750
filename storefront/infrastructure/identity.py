"""Bearer token issuing and verification.

Tokens are '<base64url claims>.<hex HMAC-SHA256 of the claims>' signed
with the shared auth secret. Claims are {"sub": user_id, "adm": bool,
"exp": unix seconds}; a token is refused once exp has passed.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time

import structlog

from storefront.domain.exceptions import AuthenticationError
from storefront.domain.value_objects import Identity
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


class TokenVerifier:
    """Issues and verifies identity tokens."""

    def __init__(self, secret: str | None = None, ttl_seconds: int | None = None) -> None:
        self.secret = secret or settings.auth_secret
        self.ttl_seconds = ttl_seconds or settings.auth_token_ttl_minutes * 60

    def _sign(self, body: str) -> str:
        return hmac.new(self.secret.encode(), body.encode(), hashlib.sha256).hexdigest()

    def issue(self, identity: Identity, now: float | None = None) -> str:
        """Create a token for an identity, valid for ttl_seconds."""
        issued_at = int(now if now is not None else time.time())
        claims = json.dumps(
            {
                "sub": identity.user_id,
                "adm": identity.is_admin,
                "exp": issued_at + self.ttl_seconds,
            },
            separators=(",", ":"),
            sort_keys=True,
        )
        body = base64.urlsafe_b64encode(claims.encode()).decode().rstrip("=")
        return f"{body}.{self._sign(body)}"

    def verify(self, token: str, now: float | None = None) -> Identity:
        """Resolve a token to its identity.

        Raises:
            AuthenticationError: If the token is malformed, expired or not
                signed with the auth secret.
        """
        body, _, signature = token.partition(".")
        if not body or not signature:
            raise AuthenticationError("Not authorized, token failed")

        if not hmac.compare_digest(self._sign(body), signature):
            logger.warning("Token signature mismatch")
            raise AuthenticationError("Not authorized, token failed")

        try:
            padded = body + "=" * (-len(body) % 4)
            claims = json.loads(base64.urlsafe_b64decode(padded))
            user_id = claims["sub"]
            expires_at = claims["exp"]
        except (binascii.Error, ValueError, KeyError, TypeError) as e:
            raise AuthenticationError("Not authorized, token failed") from e

        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("Not authorized, token failed")
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            raise AuthenticationError("Not authorized, token failed")
        if expires_at <= (now if now is not None else time.time()):
            logger.info("Expired token", user_id=user_id)
            raise AuthenticationError("Not authorized, token expired")
        return Identity(user_id=user_id, is_admin=bool(claims.get("adm", False)))
