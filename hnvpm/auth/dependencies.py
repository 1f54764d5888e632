"""Auth dependencies – JWT token validation, role checks, subscription gate."""
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Optional, List
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from hnvpm.database import get_db
from hnvpm.config import get_settings
from hnvpm.auth.access import evaluate_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.subscriptions import service as subscription_service

logger = logging.getLogger(__name__)
settings = get_settings()
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _cache_user(request: Request, user: Optional[UserAccount]) -> Optional[UserAccount]:
    request.state._current_user = user
    request.state._current_user_loaded = True
    return user


async def get_current_user_from_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[UserAccount]:
    if getattr(request.state, "_current_user_loaded", False):
        return getattr(request.state, "_current_user", None)

    token = credentials.credentials if credentials else None
    if not token:
        token = request.query_params.get("token")
    if not token:
        token = request.cookies.get("access_token")

    if not token:
        logger.debug("No token found in headers, query or cookies")
        return _cache_user(request, None)
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub"))
    except JWTError as e:
        logger.debug("JWT Error: %s", e)
        return _cache_user(request, None)
    except (ValueError, TypeError):
        return _cache_user(request, None)

    user = db.query(UserAccount).filter(UserAccount.id == user_id).first()
    return _cache_user(request, user)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> UserAccount:
    user = await get_current_user_from_token(request, credentials, db)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if user.status == "suspended":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User account is suspended.")
    return user


def require_roles(allowed_roles: List[str]):
    async def role_checker(user: UserAccount = Depends(get_current_user)):
        if user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User role {user.role} is not authorized to access this route",
            )
        return user
    return role_checker


async def require_active_access(
    request: Request,
    user: UserAccount = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserAccount:
    """Put unverified or unsubscribed accounts into view-only mode."""
    subscription_active = None
    if user.organization_id and not user.is_super_admin:
        result = subscription_service.check_subscription_status(db, user.organization_id)
        if result["subscription"] is not None:
            subscription_active = result["is_active"]

    restriction = evaluate_access(
        user,
        request.method,
        request.url.path,
        subscription_active,
        settings.EMAIL_VERIFICATION_GRACE_HOURS,
    )
    if restriction:
        raise restriction
    return user


class FixedWindowLimiter:
    """In-process fixed-window limiter keyed by caller and route."""

    def __init__(self):
        self._hits: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        expired = [key for key, (reset_at, _) in self._hits.items() if reset_at <= now]
        for key in expired:
            del self._hits[key]

    def hit(self, key: str, limit: int, window_seconds: int, detail: str = "Too many requests") -> int:
        now = time.monotonic()
        with self._lock:
            self._evict(now)
            reset_at, count = self._hits.get(key, (now + window_seconds, 0))
            count += 1
            self._hits[key] = (reset_at, count)
        if count > limit:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail)
        return count

    def __len__(self) -> int:
        return len(self._hits)

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


rate_limit_counter = FixedWindowLimiter()


def rate_limit_by_user(max_requests: int = 100, window_seconds: int = 15 * 60):
    async def limiter(request: Request, user: UserAccount = Depends(get_current_user)):
        key = f"user:{user.id}:{request.url.path}"
        try:
            rate_limit_counter.hit(
                key=key,
                limit=max_requests,
                window_seconds=window_seconds,
                detail="Too many requests from this user, please try again later.",
            )
        except HTTPException:
            logger.warning("Rate limit hit by user %s on %s", user.id, request.url.path)
            raise
        return user
    return limiter
