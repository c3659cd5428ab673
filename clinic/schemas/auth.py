from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..core.security import Role

class AccountRegister(BaseModel):
    username: str
    password: str
    role: Role = Role.PATIENT
    linked_entity_id: Optional[str] = None

class AccountLogin(BaseModel):
    username: str
    password: str

class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: Role
    linked_entity_id: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

class TokenResponse(BaseModel):
    account_id: int
    role: Role
    linked_entity_id: Optional[str] = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class AccountStatusUpdate(BaseModel):
    is_active: bool

class ScopeResponse(BaseModel):
    account_id: int
    role: Role
    entity_id: Optional[str] = None
