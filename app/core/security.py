import uuid
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from app.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

# Scopes checked by the routers
AVAILABILITY_READ = "availability:read"
AVAILABILITY_WRITE = "availability:write"
AVAILABILITY_ADMIN = "availability:admin"
APPOINTMENTS_READ = "appointments:read"
APPOINTMENTS_WRITE = "appointments:write"
TIMEZONES_READ = "timezones:read"


class Principal(BaseModel):
    """The caller. A professional's own calendar is keyed by their user_id."""
    user_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    def acting_for(self, professional_id: uuid.UUID | None) -> uuid.UUID:
        # admins may manage another professional's calendar; everyone else manages their own
        if professional_id and self.is_admin:
            return professional_id
        return self.user_id


def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")


async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # local runs accept anonymous calls as an admin with every scope
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), roles=["admin"], scopes=["*"])
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    claims = _decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(claims.get("sub") or claims.get("user_id")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    return Principal(user_id=user_id, roles=claims.get("roles", []), scopes=claims.get("scopes", []))


def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if "*" in principal.scopes or set(needed) <= set(principal.scopes):
            return principal
        raise HTTPException(status_code=403, detail=f"Missing scopes: {sorted(set(needed) - set(principal.scopes))}")
    return dep
