from fastapi import APIRouter, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from jose import jwt
from jose.exceptions import JWTError
from typing import Optional, Dict

from vidsum.config import Settings, get_settings
from vidsum.errors import NotAuthenticated
from vidsum.services.checkout import CurrentUser

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer(auto_error=False)


class UserResponse(BaseModel):
    id: str
    email: Optional[str] = None


# -------------------------
# JWT helpers (identity provider shares the secret)
# -------------------------
def decode_token(token: str, secret: Optional[str]) -> Optional[Dict]:
    if not secret:
        return None

    try:
        return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})
    except JWTError:
        return None


# -------------------------
# Auth dependencies
# -------------------------
async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None

    token = (credentials.credentials or "").strip()
    if not token:
        return None

    payload = decode_token(token, settings.jwt_secret)
    if not payload or not payload.get("sub"):
        return None

    return CurrentUser(id=str(payload["sub"]), email=payload.get("email"))


async def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise NotAuthenticated("Missing, invalid or expired token")
    return user


# -------------------------
# Routes
# -------------------------
@router.get("/me", response_model=UserResponse)
async def me(current_user: CurrentUser = Depends(get_current_user)):
    return UserResponse(id=current_user.id, email=current_user.email)
