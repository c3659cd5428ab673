from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
import logging
import re

from ..models.account import Account, RefreshToken
from ..models.patient import Patient
from ..models.doctor import Doctor
from ..core.config import settings
from ..core.errors import (
    AccountLocked, AlreadyLinked, InvalidCredentials, NotOwner,
    RoleMismatch, Unauthenticated, ValidationError
)
from ..core.security import (
    ENTITY_PREFIXES, Role, Token, create_token_pair, get_password_hash,
    hash_token, verify_password, verify_token
)
from .access_guard import AccessGuard, Operation, SessionContext
from .linkage_service import EntityLinkageResolver
from .record_store import RecordStore

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{3,50}$")

@dataclass(frozen=True)
class LoginResult:
    account: Account
    tokens: Token

    @property
    def account_id(self) -> int:
        return self.account.id

    @property
    def role(self) -> Role:
        return self.account.role

    @property
    def linked_entity_id(self) -> Optional[str]:
        return self.account.linked_entity_id

def validate_credentials(username: str, password: str) -> None:
    """Raise ValidationError for a malformed username or weak password."""
    if not username or not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "Username must be 3-50 characters of letters, digits, '.', '_', '@' or '-'"
        )
    if not password or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not any(c.isalpha() for c in password) or not any(c.isdigit() for c in password):
        raise ValidationError("Password must contain at least one letter and one digit")

class IdentityStore:
    def __init__(self, db: Session):
        self.db = db
        self.accounts = RecordStore(db, Account, "Account")
        self.guard = AccessGuard()
        self.linkage = EntityLinkageResolver(db)

    def register_account(
        self,
        username: str,
        password: str,
        role: Role,
        linked_entity_id: Optional[str] = None,
        actor: Optional[SessionContext] = None,
    ) -> Account:
        """Register a new account, optionally pre-linked to an existing profile.

        Self-service registration creates unlinked patient or doctor accounts.
        Admin accounts and pre-linked accounts need an admin ``actor``.
        """
        validate_credentials(username, password)
        role = Role(role)

        if role == Role.ADMIN and linked_entity_id:
            raise RoleMismatch("Admin accounts are never linked to a profile")

        if role == Role.ADMIN or linked_entity_id:
            if actor is None or not actor.is_admin:
                raise NotOwner("Only an admin can create admin or pre-linked accounts")

        if linked_entity_id:
            self._check_link_target(role, linked_entity_id)

        # Check if account already exists
        if self.db.query(Account).filter(Account.username == username).first():
            raise ValidationError("Username already registered")

        new_account = Account(
            username=username,
            password_hash=get_password_hash(password),
            role=role,
            linked_entity_id=linked_entity_id or None,
            is_active=True,
            failed_login_attempts=0,
        )

        try:
            self.accounts.put(new_account)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            # Lost a race on one of the unique columns
            if self.db.query(Account).filter(Account.username == username).first():
                raise ValidationError("Username already registered")
            raise AlreadyLinked(f"Profile {linked_entity_id} is already linked to another account")

        self.db.refresh(new_account)
        logger.info(f"Registered {role.value} account {new_account.id} ({username})")
        return new_account

    def login(self, username: str, password: str) -> LoginResult:
        """Authenticate an account and issue a token pair."""
        account = self.db.query(Account).filter(
            Account.username == username
        ).first()

        if not account:
            logger.info(f"Failed login for unknown username '{username}'")
            raise InvalidCredentials()

        # Check account lockout
        if account.locked_until:
            if account.locked_until > datetime.utcnow():
                raise AccountLocked()
            # Lock expired; start counting failures afresh
            account.failed_login_attempts = 0
            account.locked_until = None

        # Verify password
        if not verify_password(password, account.password_hash):
            self._handle_failed_login(account)
            raise InvalidCredentials()

        if not account.is_active:
            raise Unauthenticated("Account is deactivated")

        # Reset failed login attempts
        account.failed_login_attempts = 0
        account.locked_until = None
        account.last_login = datetime.utcnow()

        tokens = create_token_pair(account.id, account.username, account.role)
        self._store_refresh_token(account.id, tokens.refresh_token)

        self.db.commit()
        self.db.refresh(account)

        logger.info(f"Account {account.id} logged in")
        return LoginResult(account=account, tokens=tokens)

    def session_from_token(self, token: Optional[str]) -> SessionContext:
        """Resolve an access token into an explicit session context."""
        if not token:
            raise Unauthenticated("Authentication required")

        token_payload = verify_token(token)
        if not token_payload:
            raise Unauthenticated("Invalid or expired token")

        if token_payload.token_type != "access":
            raise Unauthenticated("Invalid token type")

        if token_payload.account_id is None:
            raise Unauthenticated("Invalid token payload")

        return self.session_for_account(token_payload.account_id)

    def session_for_account(self, account_id: int) -> SessionContext:
        account = self.accounts.get(account_id)
        if not account:
            raise Unauthenticated("Account not found")

        if not account.is_active:
            raise Unauthenticated("Account is deactivated")

        # Linkage is read from the store so a profile created after login is visible
        scope = self.linkage.resolve_scope(account.id)
        return SessionContext(
            account_id=account.id,
            role=scope.role,
            entity_id=scope.entity_id,
            username=account.username,
        )

    def refresh(self, refresh_token: str) -> LoginResult:
        """Rotate a refresh token into a new token pair."""
        token_payload = verify_token(refresh_token)
        if not token_payload or token_payload.token_type != "refresh":
            raise Unauthenticated("Invalid refresh token")

        stored_token = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token),
            RefreshToken.is_revoked == False,  # noqa: E712
            RefreshToken.expires_at > datetime.utcnow()
        ).first()

        if not stored_token:
            raise Unauthenticated("Invalid or expired refresh token")

        account = self.accounts.get(token_payload.account_id)
        if not account or not account.is_active:
            raise Unauthenticated("Account not found or inactive")

        new_tokens = create_token_pair(account.id, account.username, account.role)

        # Revoke old refresh token and store new one
        stored_token.is_revoked = True
        self._store_refresh_token(account.id, new_tokens.refresh_token)

        self.db.commit()
        self.db.refresh(account)

        return LoginResult(account=account, tokens=new_tokens)

    def logout(self, refresh_token: str) -> bool:
        """Revoke a refresh token. Returns False if it was unknown."""
        stored_token = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token)
        ).first()

        if not stored_token:
            return False

        stored_token.is_revoked = True
        self.db.commit()
        return True

    def list_accounts(self, ctx: SessionContext, skip: int = 0, limit: int = 50) -> List[Account]:
        self.guard.enforce(ctx, Operation.MANAGE_ACCOUNTS)
        return self.db.query(Account).order_by(Account.id).offset(skip).limit(limit).all()

    def set_account_active(self, ctx: SessionContext, account_id: int, is_active: bool) -> Account:
        self.guard.enforce(ctx, Operation.MANAGE_ACCOUNTS)
        account = self.accounts.require(account_id)
        if account.id == ctx.account_id and not is_active:
            raise ValidationError("Admins cannot deactivate their own account")

        account.is_active = is_active
        if not is_active:
            self._revoke_refresh_tokens(account.id)
        self.db.commit()
        self.db.refresh(account)

        logger.info(f"Account {account.id} {'activated' if is_active else 'deactivated'} by {ctx.account_id}")
        return account

    def ensure_bootstrap_admin(self) -> Optional[Account]:
        """Create the configured admin account if it does not exist yet."""
        if not settings.ADMIN_USERNAME or not settings.ADMIN_PASSWORD:
            return None

        existing = self.db.query(Account).filter(
            Account.username == settings.ADMIN_USERNAME
        ).first()
        if existing:
            return existing

        validate_credentials(settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
        admin = Account(
            username=settings.ADMIN_USERNAME,
            password_hash=get_password_hash(settings.ADMIN_PASSWORD),
            role=Role.ADMIN,
            is_active=True,
            failed_login_attempts=0,
        )
        self.accounts.put(admin)
        self.db.commit()
        logger.info(f"Created bootstrap admin account '{admin.username}'")
        return admin

    def _check_link_target(self, role: Role, entity_id: str) -> None:
        """A pre-link target must exist, match the role, and be unowned."""
        prefix = ENTITY_PREFIXES.get(role)
        if not prefix or not entity_id.startswith(prefix):
            raise RoleMismatch(f"{entity_id} is not a {role.value} profile id")

        model = Patient if role == Role.PATIENT else Doctor
        RecordStore(self.db, model).require(entity_id)

        holder = self.db.query(Account).filter(Account.linked_entity_id == entity_id).first()
        if holder:
            raise AlreadyLinked(f"Profile {entity_id} is already linked to another account")

    def _handle_failed_login(self, account: Account):
        """Count a failed attempt and lock the account when over the limit."""
        account.failed_login_attempts = (account.failed_login_attempts or 0) + 1

        if account.failed_login_attempts >= settings.MAX_FAILED_LOGINS:
            account.locked_until = datetime.utcnow() + timedelta(minutes=settings.LOCKOUT_MINUTES)
            logger.warning(f"Account {account.id} locked after {account.failed_login_attempts} failed logins")

        self.db.commit()

    def _revoke_refresh_tokens(self, account_id: int):
        self.db.query(RefreshToken).filter(
            RefreshToken.account_id == account_id
        ).update({"is_revoked": True})

    def _store_refresh_token(self, account_id: int, refresh_token: str):
        """Store refresh token in database, revoking earlier ones."""
        token_payload = verify_token(refresh_token)
        if token_payload and token_payload.exp:
            expires_at = datetime.utcfromtimestamp(token_payload.exp)
        else:
            expires_at = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

        self._revoke_refresh_tokens(account_id)

        self.db.add(RefreshToken(
            account_id=account_id,
            token_hash=hash_token(refresh_token),
            expires_at=expires_at
        ))
