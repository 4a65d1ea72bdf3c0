"""Bearer-token access gate for protected endpoints."""

import logging
from functools import wraps
from typing import Any, Callable, Optional

from flask import jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from placefinder.core.errors import ConfigError

logger = logging.getLogger(__name__)

_SALT = "placefinder-api-token"


class TokenGate:
    """Issues and verifies signed, time-limited API tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 3 * 60 * 60) -> None:
        if not secret:
            raise ConfigError("TOKEN_SECRET is required to issue or verify tokens")
        self.ttl_seconds = ttl_seconds
        self._serializer = URLSafeTimedSerializer(secret, salt=_SALT)

    def issue_token(self) -> str:
        return self._serializer.dumps({"scope": "api"})

    def authorize(self, credential: Optional[str]) -> bool:
        if not credential:
            return False
        try:
            self._serializer.loads(credential, max_age=self.ttl_seconds)
        except SignatureExpired:
            logger.info("Rejected expired token")
            return False
        except BadSignature:
            logger.info("Rejected token with invalid signature")
            return False
        return True


def bearer_credential(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_token(gate: TokenGate) -> Callable:
    """Decorator rejecting requests without a valid bearer token with 401."""

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            header = request.headers.get("Authorization")
            if not header:
                return jsonify({"error": "An authorization header is required"}), 401
            if not gate.authorize(bearer_credential(header)):
                return jsonify({"error": "You're unauthorized due to an invalid token"}), 401
            return view(*args, **kwargs)

        return wrapper

    return decorator
