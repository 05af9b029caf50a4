import uuid
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from therapy_booking.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

class Principal(BaseModel):
    user_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local/dev, allow missing token
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), roles=["therapist"], scopes=["*"])
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    data = _decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token subject is not a user id")
    roles = data.get("roles", [])
    scopes = data.get("scopes", [])
    return Principal(user_id=user_id, roles=roles, scopes=scopes)

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if "*" in principal.scopes:
            return principal
        if not set(needed).issubset(set(principal.scopes)):
            raise HTTPException(status_code=403, detail="Insufficient scopes")
        return principal
    return dep

def require_api_key(expected: str | None, provided: HTTPAuthorizationCredentials | None) -> None:
    """Bearer shared-secret check for machine callers (cron, schedulers)."""
    if not expected:
        raise HTTPException(status_code=503, detail="API key not configured")
    if provided is None or provided.credentials != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
