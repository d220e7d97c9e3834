# services/token_issuer.py
"""
Signs short-lived MQTT credentials as HS256 JSON Web Tokens.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        ttl: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("token ttl must be positive")
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def generate(self, device_id: str, device_type: str) -> IssuedToken:
        # JWT times are whole seconds; truncate so exp - iat == ttl exactly.
        issued_at = self._clock().astimezone(timezone.utc).replace(microsecond=0)
        expires_at = issued_at + self._ttl
        token_id = uuid.uuid4().hex

        payload = {
            "sub": device_id,
            "device_type": device_type,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": expires_at,
            "jti": token_id,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)

        logger.debug("Generated token %s for device %s (expires %s)", token_id, device_id, expires_at.isoformat())
        return IssuedToken(token=token, token_id=token_id, issued_at=issued_at, expires_at=expires_at)

    def verify(self, token: str) -> dict:
        """Decode a token issued by this service. Raises jwt.InvalidTokenError."""
        return jwt.decode(
            token,
            self._secret,
            algorithms=[ALGORITHM],
            audience=self._audience,
            issuer=self._issuer,
            options={"require": ["exp", "iat", "jti", "sub"]},
        )
