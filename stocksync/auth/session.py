"""Signed session tokens.

The auth collaborator issues tokens of the form ``<payload>.<signature>``
where ``payload`` is base64url JSON (``sub``, ``name``, ``role``, ``exp``)
and ``signature`` is base64 HMAC-SHA256 of the payload with the shared
session secret.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Callable, Optional

from ..services.context import Actor
from ..utils.config import get_config
from ..utils.exceptions import SessionTokenError
from ..utils.logger import get_api_logger

BEARER_PREFIX = "bearer "


def _sign(secret: str, payload: bytes) -> str:
    return base64.b64encode(
        hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    ).decode("utf-8")


class SessionAuthenticator:
    """Validates session tokens and maps them to actors."""

    def __init__(self, secret: Optional[str] = None, clock: Callable[[], float] = time.time):
        config = get_config()
        self.secret = secret or config.env.session_secret
        self.clock = clock
        self.logger = get_api_logger()

    def issue_token(self, actor: Actor, ttl_seconds: int = 3600) -> str:
        """Create a token for ``actor`` valid for ``ttl_seconds``."""
        payload = json.dumps({
            "sub": actor.id,
            "name": actor.display_name,
            "role": actor.role,
            "exp": int(self.clock()) + ttl_seconds,
        }, separators=(",", ":")).encode("utf-8")
        encoded = base64.urlsafe_b64encode(payload).decode("utf-8").rstrip("=")
        return f"{encoded}.{_sign(self.secret, encoded.encode('utf-8'))}"

    def authenticate(self, authorization_header: Optional[str]) -> Actor:
        """
        Validate an ``Authorization`` header.

        Args:
            authorization_header: ``Bearer <token>`` or a bare token

        Returns:
            The actor the token was issued for

        Raises:
            SessionTokenError: If the token is missing, forged or expired
        """
        if not authorization_header:
            raise SessionTokenError("Unauthorized", details={"header": "Authorization"})

        token = authorization_header.strip()
        if token.lower().startswith(BEARER_PREFIX):
            token = token[len(BEARER_PREFIX):].strip()

        encoded, _, signature = token.partition(".")
        if not encoded or not signature:
            raise SessionTokenError("Malformed session token")

        expected = _sign(self.secret, encoded.encode("utf-8"))
        if not hmac.compare_digest(expected, signature):
            raise SessionTokenError(
                "Invalid session signature",
                details={"received": signature[:10] + "..."}
            )

        try:
            padded = encoded + "=" * (-len(encoded) % 4)
            claims = json.loads(base64.urlsafe_b64decode(padded))
        except (ValueError, TypeError) as e:
            raise SessionTokenError(f"Unreadable session token: {str(e)}")

        if not claims.get("sub"):
            raise SessionTokenError("Session token has no subject")

        if int(claims.get("exp", 0)) < self.clock():
            raise SessionTokenError("Session expired", details={"exp": claims.get("exp")})

        self.logger.debug(f"Session validated for {claims['sub']}")
        return Actor(
            id=str(claims["sub"]),
            display_name=claims.get("name") or str(claims["sub"]),
            role=claims.get("role") or "viewer",
        )
