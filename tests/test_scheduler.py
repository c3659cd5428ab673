import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from clinic.core.database import SessionLocal
from clinic.core.errors import (
    InvalidTransition, NotFound, NotOwner, RoleMismatch, SlotConflict, ValidationError
)
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.services.scheduler import AppointmentScheduler

from .conftest import FROZEN_NOW, frozen_clock

SLOT = datetime(2025, 3, 1, 9, 0)


class TestBooking:

    def test_book_creates_pending_appointment(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()

        appointment = scheduler.book(patient, None, doctor.entity_id, SLOT, reason="Checkup")

        assert appointment.id.startswith("A")
        assert appointment.patient_id == patient.entity_id
        assert appointment.doctor_id == doctor.entity_id
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.reason == "Checkup"

    def test_book_in_the_past(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()

        with pytest.raises(ValidationError):
            scheduler.book(patient, None, doctor.entity_id, FROZEN_NOW - timedelta(minutes=1))

    def test_book_at_now_is_allowed(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()
        assert scheduler.book(patient, None, doctor.entity_id, FROZEN_NOW).date_time == FROZEN_NOW

    def test_aware_datetimes_are_stored_as_utc(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()
        nairobi = timezone(timedelta(hours=3))

        appointment = scheduler.book(patient, None, doctor.entity_id, datetime(2025, 3, 1, 12, 0, tzinfo=nairobi))
        assert appointment.date_time == SLOT

    def test_book_unknown_doctor(self, scheduler, make_patient):
        with pytest.raises(NotFound):
            scheduler.book(make_patient(), None, "DFFFFFFFF", SLOT)

    def test_book_requires_doctor(self, scheduler, make_patient):
        with pytest.raises(ValidationError):
            scheduler.book(make_patient(), None, "  ", SLOT)

    def test_book_for_another_patient(self, scheduler, make_patient, make_doctor):
        patient, other, doctor = make_patient(), make_patient(), make_doctor()

        with pytest.raises(NotOwner):
            scheduler.book(patient, other.entity_id, doctor.entity_id, SLOT)

    def test_doctor_cannot_book(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()

        with pytest.raises(RoleMismatch):
            scheduler.book(doctor, patient.entity_id, doctor.entity_id, SLOT)

    def test_admin_cannot_book(self, scheduler, make_patient, make_doctor, admin):
        patient, doctor = make_patient(), make_doctor()

        with pytest.raises(RoleMismatch):
            scheduler.book(admin, patient.entity_id, doctor.entity_id, SLOT)

    def test_slot_conflict(self, db, scheduler, make_patient, make_doctor):
        first, second, doctor = make_patient(), make_patient(), make_doctor()
        scheduler.book(first, None, doctor.entity_id, SLOT)

        with pytest.raises(SlotConflict):
            scheduler.book(second, None, doctor.entity_id, SLOT)

        assert db.query(Appointment).count() == 1

    def test_other_doctor_same_time(self, scheduler, make_patient, make_doctor):
        patient = make_patient()
        scheduler.book(patient, None, make_doctor().entity_id, SLOT)
        assert scheduler.book(patient, None, make_doctor().entity_id, SLOT)

    def test_cancelled_appointment_frees_slot(self, scheduler, make_patient, make_doctor):
        first, second, doctor = make_patient(), make_patient(), make_doctor()
        appointment = scheduler.book(first, None, doctor.entity_id, SLOT)
        scheduler.cancel(first, appointment.id)

        rebooked = scheduler.book(second, None, doctor.entity_id, SLOT)
        assert rebooked.status == AppointmentStatus.PENDING

    def test_completed_appointment_frees_slot(self, scheduler, make_patient, make_doctor):
        first, second, doctor = make_patient(), make_patient(), make_doctor()
        appointment = scheduler.book(first, None, doctor.entity_id, SLOT)
        scheduler.complete(doctor, appointment.id)

        assert scheduler.book(second, None, doctor.entity_id, SLOT)

    def test_lost_race_is_a_slot_conflict(self, db, scheduler, make_patient, make_doctor, monkeypatch):
        """When the pre-check misses a competing booking the unique index still rejects it."""
        first, second, doctor = make_patient(), make_patient(), make_doctor()
        scheduler.book(first, None, doctor.entity_id, SLOT)

        monkeypatch.setattr(scheduler, "_active_at", lambda doctor_id, date_time: None)
        with pytest.raises(SlotConflict):
            scheduler.book(second, None, doctor.entity_id, SLOT)

        assert db.query(Appointment).count() == 1

    def test_concurrent_bookings_yield_one_appointment(self, db, make_patient, make_doctor):
        patients = [make_patient(), make_patient()]
        doctor = make_doctor()
        barrier = threading.Barrier(len(patients))
        outcomes = []

        def book(ctx):
            session = SessionLocal()
            try:
                barrier.wait()
                AppointmentScheduler(session, clock=frozen_clock).book(ctx, None, doctor.entity_id, SLOT)
                outcomes.append("booked")
            except SlotConflict:
                outcomes.append("conflict")
            finally:
                session.close()

        threads = [threading.Thread(target=book, args=(ctx,)) for ctx in patients]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["booked", "conflict"]
        assert db.query(Appointment).count() == 1


class TestLifecycle:

    @pytest.fixture
    def booked(self, scheduler, make_patient, make_doctor):
        patient, doctor = make_patient(), make_doctor()
        appointment = scheduler.book(patient, None, doctor.entity_id, SLOT)
        return patient, doctor, appointment

    def test_doctor_confirms_and_completes(self, scheduler, booked):
        _, doctor, appointment = booked

        assert scheduler.confirm(doctor, appointment.id).status == AppointmentStatus.CONFIRMED
        assert scheduler.complete(doctor, appointment.id).status == AppointmentStatus.COMPLETED

    def test_patient_cannot_confirm(self, scheduler, booked):
        patient, _, appointment = booked

        with pytest.raises(NotOwner):
            scheduler.confirm(patient, appointment.id)

    def test_patient_cancels_own_appointment(self, scheduler, booked):
        patient, _, appointment = booked
        assert scheduler.cancel(patient, appointment.id).status == AppointmentStatus.CANCELLED

    def test_other_patient_cannot_cancel(self, scheduler, booked, make_patient):
        _, _, appointment = booked

        with pytest.raises(NotOwner):
            scheduler.cancel(make_patient(), appointment.id)

    def test_other_doctor_cannot_confirm(self, scheduler, booked, make_doctor):
        _, _, appointment = booked

        with pytest.raises(NotOwner):
            scheduler.confirm(make_doctor(), appointment.id)

    def test_unknown_appointment(self, scheduler, booked):
        _, doctor, _ = booked

        with pytest.raises(NotFound):
            scheduler.confirm(doctor, "AFFFFFFFF")

    def test_confirm_twice(self, scheduler, booked):
        _, doctor, appointment = booked
        scheduler.confirm(doctor, appointment.id)

        with pytest.raises(InvalidTransition):
            scheduler.confirm(doctor, appointment.id)

    def test_admin_cannot_leave_terminal_state(self, scheduler, booked, admin):
        patient, _, appointment = booked
        scheduler.cancel(patient, appointment.id)

        with pytest.raises(InvalidTransition):
            scheduler.confirm(admin, appointment.id)
        with pytest.raises(InvalidTransition):
            scheduler.complete(admin, appointment.id)

    def test_admin_confirms_any_appointment(self, scheduler, booked, admin):
        _, _, appointment = booked
        assert scheduler.confirm(admin, appointment.id).status == AppointmentStatus.CONFIRMED

    def test_stale_session_loses_transition_race(self, scheduler, booked):
        """A caller holding an outdated PENDING view cannot apply a second transition."""
        patient, doctor, appointment = booked
        stale = SessionLocal()
        try:
            stale_scheduler = AppointmentScheduler(stale, clock=frozen_clock)
            assert stale_scheduler.get_appointment(doctor, appointment.id).status == AppointmentStatus.PENDING

            scheduler.cancel(patient, appointment.id)

            with pytest.raises(InvalidTransition):
                stale_scheduler.confirm(doctor, appointment.id)
        finally:
            stale.close()

        assert scheduler.get_appointment(doctor, appointment.id).status == AppointmentStatus.CANCELLED

    def test_stale_confirm_after_reschedule(self, scheduler, booked):
        """Rescheduling keeps the status PENDING; a confirm based on the old time must still fail."""
        patient, doctor, appointment = booked
        moved_to = SLOT + timedelta(hours=3)
        stale = SessionLocal()
        try:
            stale_scheduler = AppointmentScheduler(stale, clock=frozen_clock)
            assert stale_scheduler.get_appointment(doctor, appointment.id).date_time == SLOT

            scheduler.reschedule(patient, appointment.id, moved_to)

            with pytest.raises(InvalidTransition):
                stale_scheduler.confirm(doctor, appointment.id)
        finally:
            stale.close()

        current = scheduler.get_appointment(doctor, appointment.id)
        assert current.status == AppointmentStatus.PENDING
        assert current.date_time == moved_to

    def test_stale_reschedule_does_not_overwrite(self, scheduler, booked):
        patient, doctor, appointment = booked
        stale = SessionLocal()
        try:
            stale_scheduler = AppointmentScheduler(stale, clock=frozen_clock)
            stale_scheduler.get_appointment(patient, appointment.id)

            scheduler.reschedule(doctor, appointment.id, SLOT + timedelta(hours=1))

            with pytest.raises(InvalidTransition):
                stale_scheduler.reschedule(patient, appointment.id, SLOT + timedelta(hours=2))
        finally:
            stale.close()

        assert scheduler.get_appointment(doctor, appointment.id).date_time == SLOT + timedelta(hours=1)

    def test_reschedule(self, scheduler, booked):
        patient, doctor, appointment = booked
        scheduler.confirm(doctor, appointment.id)
        new_time = SLOT + timedelta(hours=2)

        moved = scheduler.reschedule(patient, appointment.id, new_time)

        assert moved.date_time == new_time
        assert moved.status == AppointmentStatus.PENDING

    def test_reschedule_onto_taken_slot(self, scheduler, booked, make_patient):
        _, doctor, appointment = booked
        other = make_patient()
        taken = SLOT + timedelta(hours=1)
        scheduler.book(other, None, doctor.entity_id, taken)

        with pytest.raises(SlotConflict):
            scheduler.reschedule(doctor, appointment.id, taken)

    def test_reschedule_into_the_past(self, scheduler, booked):
        patient, _, appointment = booked

        with pytest.raises(ValidationError):
            scheduler.reschedule(patient, appointment.id, FROZEN_NOW - timedelta(days=1))

    def test_reschedule_cancelled(self, scheduler, booked):
        patient, _, appointment = booked
        scheduler.cancel(patient, appointment.id)

        with pytest.raises(InvalidTransition):
            scheduler.reschedule(patient, appointment.id, SLOT + timedelta(days=1))

    def test_admin_delete(self, db, scheduler, booked, admin):
        patient, _, appointment = booked

        with pytest.raises(NotOwner):
            scheduler.delete_appointment(patient, appointment.id)

        scheduler.delete_appointment(admin, appointment.id)
        assert db.query(Appointment).count() == 0


class TestListing:

    def test_list_is_scoped_to_caller(self, scheduler, make_patient, make_doctor, admin):
        alice, bob = make_patient(), make_patient()
        doctor = make_doctor()
        scheduler.book(alice, None, doctor.entity_id, SLOT + timedelta(hours=1))
        scheduler.book(bob, None, doctor.entity_id, SLOT)

        assert [a.patient_id for a in scheduler.list_appointments(alice)] == [alice.entity_id]
        assert [a.patient_id for a in scheduler.list_appointments(doctor)] == [bob.entity_id, alice.entity_id]
        assert len(scheduler.list_appointments(admin)) == 2

    def test_list_for_someone_else(self, scheduler, make_patient):
        alice, bob = make_patient(), make_patient()

        with pytest.raises(NotOwner):
            scheduler.list_appointments(alice, patient_id=bob.entity_id)

    def test_list_filters(self, scheduler, make_patient, make_doctor, admin):
        patient, doctor = make_patient(), make_doctor()
        first = scheduler.book(patient, None, doctor.entity_id, SLOT)
        scheduler.book(patient, None, doctor.entity_id, SLOT + timedelta(days=1))
        scheduler.cancel(patient, first.id)

        cancelled = scheduler.list_appointments(admin, status=AppointmentStatus.CANCELLED)
        assert [a.id for a in cancelled] == [first.id]

        on_day = scheduler.list_appointments(admin, on_date=date(2025, 3, 2))
        assert [a.date_time for a in on_day] == [SLOT + timedelta(days=1)]


def test_booking_scenario(scheduler, make_patient, make_doctor):
    """Book, confirm, double-book, complete, then a late cancel by the patient."""
    p1, p2 = make_patient(), make_patient()
    d1 = make_doctor()

    a1 = scheduler.book(p1, None, d1.entity_id, SLOT)
    assert a1.status == AppointmentStatus.PENDING

    assert scheduler.confirm(d1, a1.id).status == AppointmentStatus.CONFIRMED

    with pytest.raises(SlotConflict):
        scheduler.book(p2, None, d1.entity_id, SLOT)

    assert scheduler.complete(d1, a1.id).status == AppointmentStatus.COMPLETED

    with pytest.raises(InvalidTransition):
        scheduler.cancel(p1, a1.id)
    assert scheduler.get_appointment(p1, a1.id).status == AppointmentStatus.COMPLETED
