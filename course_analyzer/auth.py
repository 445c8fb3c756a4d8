from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from jose import JWTError, jwt

from course_analyzer.errors import AuthenticationError

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(hours=24)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        ...


class JwtTokenVerifier:
    def __init__(self, secret: str, *, algorithm: str = ALGORITHM):
        self._secret = secret
        self._algorithm = algorithm

    def issue_token(
        self,
        user_id: str,
        *,
        email: str | None = None,
        role: str | None = None,
        expires_in: timedelta = DEFAULT_TOKEN_TTL,
    ) -> str:
        claims: dict[str, Any] = {
            "userId": user_id,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        if email:
            claims["email"] = email
        if role:
            claims["role"] = role
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict[str, Any]:
        if not (token or "").strip():
            raise AuthenticationError("No token provided")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise AuthenticationError("Invalid token") from exc

        if not claims.get("userId"):
            raise AuthenticationError("Invalid token")
        return claims


def bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    scheme, _, credentials = raw.partition(" ")
    if scheme.lower() == "bearer":
        raw = credentials.strip()
    if not raw:
        raise AuthenticationError("No token provided")
    return raw
