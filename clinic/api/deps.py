from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
import logging
import redis

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.errors import RateLimited, Unauthenticated
from ..core.security import security
from ..services.access_guard import SessionContext
from ..services.identity_service import IdentityStore
from ..services.scheduler import AppointmentScheduler, Clock

logger = logging.getLogger(__name__)

async def get_session_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> SessionContext:
    """Resolve the bearer token into the caller's session context."""
    token = credentials.credentials if credentials else None
    return IdentityStore(db).session_from_token(token)

async def get_optional_session_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Optional[SessionContext]:
    """Session context if a valid token was sent, None otherwise."""
    if not credentials:
        return None
    try:
        return IdentityStore(db).session_from_token(credentials.credentials)
    except Unauthenticated:
        return None

def get_clock() -> Clock:
    """Source of "now" for booking-time checks."""
    return datetime.utcnow

def get_scheduler(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock)
) -> AppointmentScheduler:
    return AppointmentScheduler(db, clock=clock)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Per-IP hourly request budget for authentication endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{request.url.path}:{client_ip}"

    try:
        current_requests = redis_client.get(key)
        if current_requests is None:
            redis_client.setex(key, 3600, 1)
            return
        if int(current_requests) >= settings.RATE_LIMIT_PER_HOUR:
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
            raise RateLimited()
        redis_client.incr(key)
    except redis.RedisError as exc:
        # Rate limiting is best effort; authentication still works without Redis
        logger.warning(f"Rate limit check skipped: {exc}")
