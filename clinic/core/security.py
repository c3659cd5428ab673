from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import HTTPBearer
from pydantic import BaseModel
import hashlib
import secrets
from enum import Enum

from .config import settings

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT Security; a missing header is reported as Unauthenticated by the deps layer
security = HTTPBearer(auto_error=False)

class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

# Role-prefixed ids keep patient and doctor keys disjoint
ENTITY_PREFIXES = {
    Role.PATIENT: "P",
    Role.DOCTOR: "D",
}
APPOINTMENT_PREFIX = "A"
HEALTH_RECORD_PREFIX = "R"

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    username: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None  # "access" or "refresh"
    jti: Optional[str] = None

    @property
    def account_id(self) -> Optional[int]:
        if self.sub is None or not self.sub.isdigit():
            return None
        return int(self.sub)

# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)

def hash_token(token: str) -> str:
    """Digest used to store refresh tokens at rest."""
    return hashlib.sha256(token.encode()).hexdigest()

def generate_entity_id(prefix: str) -> str:
    """Random id such as ``P3FA9C21B``."""
    return f"{prefix}{secrets.token_hex(4).upper()}"

# JWT utilities
def _encode(claims: dict, token_type: str, lifetime: timedelta, **extra) -> str:
    to_encode = {
        **claims,
        **extra,
        "exp": datetime.utcnow() + lifetime,
        "token_type": token_type,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def create_access_token(claims: dict, expires_delta: Optional[timedelta] = None) -> str:
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(claims, "access", lifetime)

def create_refresh_token(claims: dict) -> str:
    # jti keeps two refreshes issued in the same second distinct
    return _encode(
        claims,
        "refresh",
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        jti=secrets.token_urlsafe(16),
    )

def verify_token(token: str) -> Optional[TokenPayload]:
    """Decode a token; None if the signature or expiry check fails."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return TokenPayload(**payload)

def create_token_pair(account_id: int, username: str, role: Role) -> Token:
    """Access and refresh tokens for one account. ``sub`` must be a string."""
    claims = {
        "sub": str(account_id),
        "username": username,
        "role": Role(role).value,
    }
    return Token(
        access_token=create_access_token(claims),
        refresh_token=create_refresh_token(claims),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )
