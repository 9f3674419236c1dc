from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from runclub.config import get_settings
from runclub.errors import Unauthorized, Forbidden
from runclub.schemas.user import CurrentUser

settings = get_settings()
security = HTTPBearer(auto_error=False)


class AuthService:
    """Verifies access tokens issued by the identity provider."""

    @staticmethod
    def decode_token(token: str) -> Optional[CurrentUser]:
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                audience=settings.jwt_audience
            )
        except JWTError:
            return None

        user_id = payload.get("sub")
        if user_id is None:
            return None
        return CurrentUser(id=str(user_id), email=payload.get("email"))

    @staticmethod
    def is_admin(user: CurrentUser) -> bool:
        return bool(user.email) and user.email.lower() in {e.lower() for e in settings.admin_emails}


def get_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get("access_token")


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[CurrentUser]:
    token = get_token(request, credentials)
    if not token:
        return None
    return AuthService.decode_token(token)


def get_current_user_required(
    user: Optional[CurrentUser] = Depends(get_current_user)
) -> CurrentUser:
    if user is None:
        raise Unauthorized("Not authenticated")
    return user


def get_current_admin(
    current_user: CurrentUser = Depends(get_current_user_required)
) -> CurrentUser:
    if not AuthService.is_admin(current_user):
        raise Forbidden("Admin access required")
    return current_user
