from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import JWTError, jwt

from outreach.core.config import settings

ALGORITHM = "HS256"


class TokenValidationError(ValueError):
    pass


def create_token(
    subject: str,
    expires_delta: timedelta,
    token_type: str,
    *,
    actor: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "type": token_type,
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    if actor:
        payload["act"] = actor
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, *, expected_type: str | None = None) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenValidationError("Invalid token subject")

    token_type = payload.get("type")
    if expected_type and token_type != expected_type:
        raise TokenValidationError("Invalid token type")

    return payload


def create_tenant_access_token(business_id: str, *, actor: str | None = None) -> str:
    # Issued by the auth service in production; kept here for tooling and tests.
    return create_token(
        subject=business_id,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        token_type="access",
        actor=actor,
    )
