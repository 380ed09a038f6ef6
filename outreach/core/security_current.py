from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from outreach.core.deps import get_db
from outreach.core.security import TokenValidationError, decode_token
from outreach.models.business import Business

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantAccess:
    business: Business
    actor: str


def get_current_tenant(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> TenantAccess:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    business_id = str(payload["sub"])
    business = db.execute(select(Business).where(Business.id == business_id)).scalar_one_or_none()
    if not business:
        raise HTTPException(status_code=401, detail="Tenant not found")
    return TenantAccess(business=business, actor=str(payload.get("act") or business.id))
