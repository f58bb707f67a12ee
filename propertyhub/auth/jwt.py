from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..config import settings
from ..core.errors import ApiError, ErrorCodes
from ..models.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    to_encode = data.copy()
    to_encode.setdefault("type", "access")
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    credentials_exception = ApiError(
        status.HTTP_401_UNAUTHORIZED,
        "Could not validate credentials",
        ErrorCodes.AUTH_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = decode_token(credentials.credentials)
        user_id: Optional[str] = payload.get("sub")
        token_type = payload.get("type")
        if user_id is None or token_type not in (None, "access"):
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    try:
        user = db.get(User, int(user_id))
    except (TypeError, ValueError):
        raise credentials_exception
    if user is None or not user.is_active:
        raise credentials_exception
    request.state.user_id = user.id
    return user


def require_roles(*allowed_roles: str):
    allowed = set(allowed_roles)

    def role_checker(user: User = Depends(get_current_user)) -> User:
        if not allowed:
            return user
        if user.has_any_role(*allowed):
            return user
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            f"Access denied. Required role: {' or '.join(sorted(allowed))}",
            ErrorCodes.ACC_ROLE_REQUIRED,
        )

    return role_checker


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def require_active_subscription(user: User = Depends(get_current_user)) -> User:
    subscription_status = (user.subscription_status or "").upper()
    if subscription_status == "ACTIVE":
        return user
    if subscription_status == "TRIAL":
        trial_end = user.trial_end_date
        if trial_end is not None and _as_aware(trial_end) > datetime.now(timezone.utc):
            return user
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            "Your trial period has expired. Please upgrade your plan to continue.",
            ErrorCodes.SUB_TRIAL_EXPIRED,
            details={"trialEndDate": trial_end.isoformat() if trial_end else None},
        )
    raise ApiError(
        status.HTTP_403_FORBIDDEN,
        "An active subscription is required for this action.",
        ErrorCodes.SUB_SUBSCRIPTION_REQUIRED,
        details={"subscriptionStatus": subscription_status or None},
    )
