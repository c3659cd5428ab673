"""
One-account-to-one-profile linkage.

``link_new_entity`` creates the patient or doctor record and back-links the
account in a single transaction. The back-link is a conditional update on
``linked_entity_id IS NULL``; if another registration won first, nothing
is committed and the caller gets ``AlreadyLinked``.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import AlreadyLinked, NotFound, RoleMismatch, ValidationError
from ..core.security import ENTITY_PREFIXES, Role, generate_entity_id
from ..models.account import Account
from ..models.doctor import Doctor
from ..models.patient import Patient
from .access_guard import AccessGuard, Operation, SessionContext
from .record_store import RecordStore

logger = logging.getLogger(__name__)

PATIENT_FIELDS = ("name", "age", "gender", "contact", "address", "medical_history")
DOCTOR_FIELDS = ("name", "specialty", "contact", "email", "schedule")


@dataclass(frozen=True)
class Scope:
    role: Role
    entity_id: Optional[str] = None


def _require_text(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return str(value).strip()


def clean_patient_profile(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate patient fields; ``partial`` accepts a subset for updates."""
    unknown = set(data) - set(PATIENT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown patient fields: {', '.join(sorted(unknown))}")

    cleaned: Dict[str, Any] = {}
    for field in ("name", "gender", "contact"):
        if not partial or field in data:
            cleaned[field] = _require_text(data, field)

    if not partial or "age" in data:
        age = data.get("age")
        if isinstance(age, bool) or not isinstance(age, int) or age < 0:
            raise ValidationError("age must be a non-negative integer", details={"field": "age"})
        cleaned["age"] = age

    for field in ("address", "medical_history"):
        if field in data:
            cleaned[field] = data[field]
    return cleaned


def clean_doctor_profile(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    unknown = set(data) - set(DOCTOR_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown doctor fields: {', '.join(sorted(unknown))}")

    cleaned: Dict[str, Any] = {}
    for field in ("name", "specialty"):
        if not partial or field in data:
            cleaned[field] = _require_text(data, field)

    for field in ("contact", "email", "schedule"):
        if field in data:
            cleaned[field] = data[field]
    return cleaned


class EntityLinkageResolver:
    def __init__(self, db: Session):
        self.db = db
        self.accounts = RecordStore(db, Account, "Account")
        self.guard = AccessGuard()

    def resolve_scope(self, account_id: int) -> Scope:
        """Role and linked profile id of an account; read-only."""
        account = self.accounts.require(account_id)
        if account.role == Role.ADMIN:
            return Scope(role=Role.ADMIN)
        return Scope(role=account.role, entity_id=account.linked_entity_id)

    def link_new_entity(
        self,
        ctx: SessionContext,
        role: Role,
        profile_data: Dict[str, Any],
    ) -> str:
        """Create the caller's patient or doctor profile and link it to the account."""
        self.guard.enforce(ctx, Operation.LINK_ENTITY)

        role = Role(role)
        if role == Role.ADMIN:
            raise RoleMismatch("Admin accounts are never linked to a profile")

        if ctx.role != role:
            raise RoleMismatch(f"A {ctx.role.value} account cannot register a {role.value} profile")

        if role == Role.PATIENT:
            entity = Patient(**clean_patient_profile(profile_data))
        else:
            entity = Doctor(**clean_doctor_profile(profile_data))
        entity_id = generate_entity_id(ENTITY_PREFIXES[role])
        entity.id = entity_id

        try:
            self.db.add(entity)
            self.db.flush()

            result = self.db.execute(
                update(Account)
                .where(Account.id == ctx.account_id, Account.linked_entity_id.is_(None))
                .values(linked_entity_id=entity_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                self._raise_link_failure(ctx.account_id)

            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._raise_link_failure(ctx.account_id)

        logger.info(f"Account {ctx.account_id} linked to new {role.value} profile {entity_id}")
        return entity_id

    def _raise_link_failure(self, account_id: int):
        account = self.accounts.get(account_id)
        if account is None:
            raise NotFound(f"Account not found: {account_id}")
        logger.warning(f"Rejected second profile registration for account {account_id}")
        raise AlreadyLinked(f"Account is already linked to {account.linked_entity_id}")
