from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import (
    get_session_context, get_optional_session_context, rate_limit_check
)
from ...services.access_guard import SessionContext
from ...services.identity_service import IdentityStore, LoginResult
from ...schemas.auth import (
    AccountLogin, AccountRegister, AccountResponse, AccountStatusUpdate,
    RefreshTokenRequest, TokenResponse
)

router = APIRouter(prefix="/auth", tags=["Authentication"])

def _token_response(result: LoginResult) -> TokenResponse:
    return TokenResponse(
        account_id=result.account_id,
        role=result.role,
        linked_entity_id=result.linked_entity_id,
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        token_type=result.tokens.token_type,
        expires_in=result.tokens.expires_in,
    )

@router.post("/register", response_model=AccountResponse, status_code=201)
async def register(
    account_data: AccountRegister,
    db: Session = Depends(get_db),
    actor: Optional[SessionContext] = Depends(get_optional_session_context),
    _: None = Depends(rate_limit_check)
):
    """Register a new account."""
    account = IdentityStore(db).register_account(
        account_data.username,
        account_data.password,
        account_data.role,
        linked_entity_id=account_data.linked_entity_id,
        actor=actor,
    )
    return AccountResponse.model_validate(account)

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: AccountLogin,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Authenticate and return access tokens."""
    result = IdentityStore(db).login(login_data.username, login_data.password)
    return _token_response(result)

@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """Refresh access token using refresh token."""
    result = IdentityStore(db).refresh(refresh_data.refresh_token)
    return _token_response(result)

@router.post("/logout")
async def logout(
    refresh_data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """Logout by revoking the refresh token."""
    success = IdentityStore(db).logout(refresh_data.refresh_token)

    return {"message": "Successfully logged out" if success else "Logout completed"}

@router.get("/me", response_model=AccountResponse)
async def get_current_account(
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db)
):
    """Get current account information."""
    account = IdentityStore(db).accounts.require(ctx.account_id)
    return AccountResponse.model_validate(account)

@router.post("/verify-token")
async def verify_token_endpoint(
    ctx: SessionContext = Depends(get_session_context)
):
    """Verify if token is valid."""
    return {
        "valid": True,
        "account_id": ctx.account_id,
        "username": ctx.username,
        "role": ctx.role,
        "linked_entity_id": ctx.entity_id
    }

# Admin routes
@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """List all accounts (admin only)."""
    accounts = IdentityStore(db).list_accounts(ctx, skip=skip, limit=limit)
    return [AccountResponse.model_validate(account) for account in accounts]

@router.patch("/accounts/{account_id}/status", response_model=AccountResponse)
async def update_account_status(
    account_id: int,
    status_data: AccountStatusUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Activate or deactivate an account (admin only)."""
    account = IdentityStore(db).set_account_active(ctx, account_id, status_data.is_active)
    return AccountResponse.model_validate(account)
