from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from jwt import InvalidTokenError

DEFAULT_TOKEN_TTL = timedelta(minutes=30)
CUSTOMER_ROLE = "customer"
OPERATOR_ROLES = frozenset({"operator", "admin"})


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    role: str = CUSTOMER_ROLE,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + (expires_delta or DEFAULT_TOKEN_TTL),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Token from an `Authorization: Bearer <token>` header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_access_claims(token: str, *, secret: str, algorithms: Sequence[str]) -> tuple[int, str]:
    """(user id, role) from the token. Tokens without a role are customers. Raises ValueError when unusable."""
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
    role = payload.get("role", CUSTOMER_ROLE)
    if not isinstance(role, str):
        raise ValueError("token role is not a string")
    return user_id, role
