"""
Authorization decisions for every entity-scoped operation.

The guard is pure: it looks only at the caller's ``SessionContext`` (whose
linkage was resolved when the session was built) and the ``Target`` the
service loaded. Services consult it before reading or mutating anything
that belongs to a patient or doctor.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.errors import ERROR_KINDS, AlreadyLinked, NotOwner, RoleMismatch, Unauthenticated
from ..core.security import Role


@dataclass(frozen=True)
class SessionContext:
    """Identity of the caller for a single operation."""
    account_id: int
    role: Role
    entity_id: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class Target:
    """The patient and/or doctor an operation touches."""
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None


class Operation(str, Enum):
    LINK_ENTITY = "link_entity"
    READ_PATIENT = "read_patient"
    UPDATE_PATIENT = "update_patient"
    EXPORT_HISTORY = "export_history"
    LIST_DOCTORS = "list_doctors"
    READ_DOCTOR = "read_doctor"
    UPDATE_DOCTOR = "update_doctor"
    MANAGE_SLOTS = "manage_slots"
    BOOK_APPOINTMENT = "book_appointment"
    READ_APPOINTMENT = "read_appointment"
    LIST_APPOINTMENTS = "list_appointments"
    CONFIRM_APPOINTMENT = "confirm_appointment"
    COMPLETE_APPOINTMENT = "complete_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"
    RESCHEDULE_APPOINTMENT = "reschedule_appointment"
    ADD_HEALTH_RECORD = "add_health_record"
    READ_HEALTH_RECORDS = "read_health_records"
    ADMIN_OVERRIDE = "admin_override"
    ADMIN_REPORT = "admin_report"
    MANAGE_ACCOUNTS = "manage_accounts"


# Operations that need the caller to *be* a patient or doctor
IDENTITY_OPERATIONS = frozenset({
    Operation.LINK_ENTITY,
    Operation.BOOK_APPOINTMENT,
    Operation.ADD_HEALTH_RECORD,
})

ADMIN_OPERATIONS = frozenset({
    Operation.ADMIN_OVERRIDE,
    Operation.ADMIN_REPORT,
    Operation.MANAGE_ACCOUNTS,
})

DIRECTORY_OPERATIONS = frozenset({
    Operation.LIST_DOCTORS,
    Operation.READ_DOCTOR,
})

PATIENT_OPERATIONS = frozenset({
    Operation.READ_PATIENT,
    Operation.UPDATE_PATIENT,
    Operation.EXPORT_HISTORY,
    Operation.BOOK_APPOINTMENT,
    Operation.READ_APPOINTMENT,
    Operation.LIST_APPOINTMENTS,
    Operation.CANCEL_APPOINTMENT,
    Operation.RESCHEDULE_APPOINTMENT,
    Operation.READ_HEALTH_RECORDS,
})

DOCTOR_OPERATIONS = frozenset({
    Operation.READ_PATIENT,
    Operation.UPDATE_DOCTOR,
    Operation.MANAGE_SLOTS,
    Operation.READ_APPOINTMENT,
    Operation.LIST_APPOINTMENTS,
    Operation.CONFIRM_APPOINTMENT,
    Operation.COMPLETE_APPOINTMENT,
    Operation.CANCEL_APPOINTMENT,
    Operation.RESCHEDULE_APPOINTMENT,
    Operation.ADD_HEALTH_RECORD,
    Operation.READ_HEALTH_RECORDS,
})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    kind: Optional[str] = None
    message: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(error_cls, message: str) -> Decision:
    return Decision(False, error_cls.kind, message)


class AccessGuard:
    """Role and ownership rules, evaluated in a fixed order."""

    def authorize(
        self,
        ctx: Optional[SessionContext],
        operation: Operation,
        target: Optional[Target] = None,
    ) -> Decision:
        if ctx is None:
            return deny(Unauthenticated, "Authentication required")

        target = target or Target()

        if ctx.role == Role.ADMIN:
            if operation in IDENTITY_OPERATIONS:
                return deny(RoleMismatch, "Admin accounts cannot act as a patient or doctor")
            return ALLOW

        if operation in DIRECTORY_OPERATIONS:
            return ALLOW

        if operation in ADMIN_OPERATIONS:
            return deny(NotOwner, "Admin access required")

        if operation == Operation.LINK_ENTITY:
            if ctx.entity_id is None:
                return ALLOW
            return deny(AlreadyLinked, f"Account is already linked to {ctx.entity_id}")

        if ctx.role == Role.PATIENT:
            return self._check_owner(ctx, operation, PATIENT_OPERATIONS, target.patient_id, "patient")

        if ctx.role == Role.DOCTOR:
            if operation == Operation.BOOK_APPOINTMENT:
                return deny(RoleMismatch, "Only patients can book appointments")
            return self._check_owner(ctx, operation, DOCTOR_OPERATIONS, target.doctor_id, "doctor")

        return deny(NotOwner, "Unknown role")

    def enforce(
        self,
        ctx: Optional[SessionContext],
        operation: Operation,
        target: Optional[Target] = None,
    ) -> SessionContext:
        """Raise the matching error unless the operation is allowed."""
        decision = self.authorize(ctx, operation, target)
        if not decision.allowed:
            raise ERROR_KINDS[decision.kind](decision.message)
        return ctx

    @staticmethod
    def _check_owner(ctx, operation, permitted, owner_id, label) -> Decision:
        if operation not in permitted:
            return deny(NotOwner, f"A {label} account cannot {operation.value.replace('_', ' ')}")
        if ctx.entity_id is None:
            return deny(NotOwner, f"Register a {label} profile first")
        if owner_id != ctx.entity_id:
            return deny(NotOwner, f"Record does not belong to {label} {ctx.entity_id}")
        return ALLOW
