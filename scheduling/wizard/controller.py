"""
Booking Wizard Controller.

A four-step state machine (patient, doctor and time, details, confirm)
that accumulates a BookingDraft, runs the enrichment lookups triggered by
selections and produces the final booking request.
"""

import datetime
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, List, Optional, Protocol
from zoneinfo import ZoneInfo

from loguru import logger

from scheduling.config import Settings, get_settings
from scheduling.errors import SubmissionFailure, SubmissionInProgressError, ValidationError
from scheduling.models.booking import (
    Appointment,
    AppointmentType,
    BookingDraft,
    BookingRequest,
    PaymentMethod,
)
from scheduling.models.doctor import Doctor, Procedure
from scheduling.models.patient import Patient, PatientHistorySummary
from scheduling.models.schedule import parse_hhmm
from scheduling.services.history import VisitHistoryAnalyzer
from scheduling.services.pricing import find_procedure, resolve_draft_price
from scheduling.services.schedule import ScheduleStateRepository
from scheduling.wizard.lookups import LookupState, TrackedLookup


class WizardStep(IntEnum):
    SELECT_PATIENT = 1
    SELECT_DOCTOR_TIME = 2
    DETAILS = 3
    CONFIRM = 4


class BookingBackend(Protocol):
    """Collaborator operations the wizard depends on."""

    async def get_patient_history(
        self, patient_id: int, doctor_id: Optional[int] = None
    ) -> PatientHistorySummary: ...

    async def list_doctor_procedures(self, doctor_id: int) -> List[Procedure]: ...

    async def create_appointment(self, request: BookingRequest) -> Appointment: ...

    async def update_appointment(
        self, appointment_id: int, request: BookingRequest
    ) -> Appointment: ...


class BookingWizard:
    """
    Drives one operator through a booking.

    Selecting a patient starts the visit history lookup and selecting a
    doctor starts the procedure catalog lookup. Both run in the background
    and never gate the step guards. Selection methods that start lookups
    must be called from a running event loop.

    Args:
        backend: Clinic backend (usually a ClinicApiClient)
        schedule_repository: Optional reconciled schedules used to reject
            break and booked times
        settings: Application settings
        on_cancel: Called when the operator backs out of the first step
        on_success: Called with the created appointment after submission
        appointment_id: Edit this existing appointment instead of creating one
        default_date: Date preselected in the calendar (clinic today if None)
    """

    def __init__(
        self,
        backend: BookingBackend,
        schedule_repository: Optional[ScheduleStateRepository] = None,
        settings: Optional[Settings] = None,
        on_cancel: Optional[Callable[[], None]] = None,
        on_success: Optional[Callable[[Appointment], None]] = None,
        appointment_id: Optional[int] = None,
        default_date: Optional[datetime.date] = None,
    ):
        self.settings = settings or get_settings()
        self._backend = backend
        self._schedule = schedule_repository
        self._on_cancel = on_cancel
        self._on_success = on_success
        self._appointment_id = appointment_id
        self._default_date = default_date

        self._analyzer = VisitHistoryAnalyzer(backend)
        self._history: TrackedLookup[PatientHistorySummary] = TrackedLookup(
            "patient_history", self._fetch_history, on_success=self._on_history
        )
        self._procedures: TrackedLookup[List[Procedure]] = TrackedLookup(
            "doctor_procedures", backend.list_doctor_procedures
        )

        self._step = WizardStep.SELECT_PATIENT
        self._draft = self._empty_draft()
        self._date_chosen = False
        self._submitting = False
        self._submission_error: Optional[SubmissionFailure] = None
        self._open = True

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def step(self) -> WizardStep:
        return self._step

    @property
    def draft(self) -> BookingDraft:
        return self._draft

    @property
    def history(self) -> LookupState[PatientHistorySummary]:
        return self._history.state

    @property
    def procedures(self) -> LookupState[List[Procedure]]:
        return self._procedures.state

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    @property
    def can_submit(self) -> bool:
        """Whether the confirm action is enabled."""
        return (
            self._step == WizardStep.CONFIRM
            and not self._submitting
            and not self._missing_for_request()
        )

    @property
    def submission_error(self) -> Optional[SubmissionFailure]:
        return self._submission_error

    @property
    def available_procedures(self) -> List[Procedure]:
        """Procedures of the selected doctor, empty unless the lookup succeeded."""
        state = self._procedures.state
        if state.succeeded and state.data is not None:
            return list(state.data)
        return []

    @property
    def selected_procedure(self) -> Optional[Procedure]:
        return find_procedure(self.available_procedures, self._draft.selected_procedure_id)

    @property
    def resolved_price(self) -> Optional[Decimal]:
        return resolve_draft_price(self._draft, self.available_procedures)

    @property
    def history_advisory(self) -> Optional[str]:
        """Advisory message to show in the history panel, if any."""
        state = self._history.state
        if state.succeeded and state.data is not None:
            return state.data.message
        return None

    @property
    def suggested_follow_up(self) -> Optional[datetime.date]:
        """Follow-up date suggested for consultation bookings."""
        if self._draft.appointment_type != AppointmentType.CONSULTATION:
            return None
        if self._draft.date is None or self._draft.time is None:
            return None
        return self._draft.date + datetime.timedelta(days=self.settings.follow_up_interval_days)

    # ------------------------------------------------------------------
    # Step navigation
    # ------------------------------------------------------------------

    def _missing_for_step(self, step: WizardStep) -> List[str]:
        draft = self._draft
        match step:
            case WizardStep.SELECT_PATIENT:
                return [] if draft.patient is not None else ["patient"]
            case WizardStep.SELECT_DOCTOR_TIME:
                missing = []
                if draft.doctor is None:
                    missing.append("doctor")
                if draft.time is None:
                    missing.append("time")
                return missing
            case WizardStep.DETAILS:
                return [] if draft.appointment_type is not None else ["appointment_type"]
            case WizardStep.CONFIRM:
                return []

    def can_proceed(self, step: Optional[int] = None) -> bool:
        """
        Check the forward guard of a step (the current one by default).

        The confirm step has no forward guard: its action is submit.
        """
        target = WizardStep(step) if step is not None else self._step
        return not self._missing_for_step(target)

    def next(self) -> WizardStep:
        """
        Advance one step.

        Raises:
            ValidationError: If the current step's guard does not pass
        """
        if self._step == WizardStep.CONFIRM:
            raise ValidationError("The confirmation step has no next step; submit instead")
        missing = self._missing_for_step(self._step)
        if missing:
            raise ValidationError(
                f"Cannot leave step {self._step.value}: missing {', '.join(missing)}",
                missing=missing,
            )
        self._step = WizardStep(self._step + 1)
        logger.info(f"Booking wizard advanced to step {self._step.value} ({self._step.name})")
        return self._step

    def back(self) -> Optional[WizardStep]:
        """
        Go back one step, or cancel the wizard from the first step.

        Returns the new step, or None when the wizard was cancelled.
        """
        if self._step == WizardStep.SELECT_PATIENT:
            self.cancel()
            return None
        self._step = WizardStep(self._step - 1)
        logger.info(f"Booking wizard went back to step {self._step.value} ({self._step.name})")
        return self._step

    def cancel(self) -> None:
        """Discard the draft, close the wizard and notify the host."""
        logger.info("Booking wizard cancelled")
        self.close()
        if self._on_cancel is not None:
            self._on_cancel()

    def close(self) -> None:
        """Close the wizard; pending lookups are dropped and the draft reset."""
        self._reset_draft()
        self._open = False

    def open(self, default_date: Optional[datetime.date] = None) -> None:
        """Reopen a closed wizard with an empty draft."""
        if default_date is not None:
            self._default_date = default_date
        self._reset_draft()
        self._open = True

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def select_patient(self, patient: Optional[Patient]) -> None:
        """Select the patient and start the visit history lookup."""
        self._draft = self._draft.with_patient(patient)
        if patient is None:
            self._history.reset()
            return
        logger.info(f"Patient {patient.id} selected")
        self._history.start(patient.id)

    def select_doctor(self, doctor: Optional[Doctor]) -> None:
        """Select the doctor and start the procedure catalog lookup."""
        previous = self._draft.doctor
        self._draft = self._draft.with_doctor(doctor)
        if doctor is None:
            self._procedures.reset()
            return
        if previous is not None and previous.id == doctor.id and not self._procedures.state.failed:
            return
        logger.info(f"Doctor {doctor.id} selected")
        if self._draft.time is not None and not self._time_is_selectable(self._draft.time):
            logger.info(f"Time {self._draft.time} is not bookable for doctor {doctor.id}, clearing")
            self._draft = self._draft.with_time(None)
        self._procedures.start(doctor.id)

    def select_date(self, value: datetime.date) -> None:
        """Select the appointment date; a time picked on another date is cleared."""
        self._date_chosen = True
        if value != self._draft.date:
            self._draft = self._draft.with_date(value).with_time(None)

    def select_time(self, value: Optional[str]) -> None:
        """
        Select the appointment time (HH:mm).

        Raises:
            ValidationError: If the time is malformed, or the reconciled
                schedule shows it as break or already booked
        """
        if value is None:
            self._draft = self._draft.with_time(None)
            return
        try:
            parse_hhmm(value)
        except ValueError as e:
            raise ValidationError(str(e), missing=["time"]) from e
        if not self._time_is_selectable(value):
            raise ValidationError(f"Time {value} is not available", missing=["time"])
        self._draft = self._draft.with_time(value)

    def set_appointment_type(self, value: Optional[AppointmentType]) -> None:
        self._draft = self._draft.with_appointment_type(value)

    def set_reason(self, value: str) -> None:
        self._draft = self._draft.with_reason(value)

    def set_notes(self, value: str) -> None:
        self._draft = self._draft.with_notes(value)

    def set_urgent(self, value: bool) -> None:
        self._draft = self._draft.with_urgent(value)

    def select_procedure(self, procedure_id: Optional[int]) -> None:
        """Select a procedure from the doctor's catalog (pricing input only)."""
        self._draft = self._draft.with_procedure(procedure_id)

    def set_manual_price(self, value: Any) -> None:
        """
        Set the price typed by the operator.

        Raises:
            ValidationError: If the amount cannot be parsed or is negative
        """
        try:
            self._draft = self._draft.with_manual_price(value)
        except ValueError as e:
            raise ValidationError(f"Invalid price: {value}", missing=["manual_price"]) from e

    def set_payment_method(self, value: Optional[PaymentMethod]) -> None:
        self._draft = self._draft.with_payment_method(value)

    def set_create_invoice(self, value: bool) -> None:
        self._draft = self._draft.with_create_invoice(value)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _missing_for_request(self) -> List[str]:
        missing = self._draft.missing_for_submission
        if self._draft.appointment_type is None:
            missing.append("appointment_type")
        return missing

    def build_request(self) -> BookingRequest:
        """
        Assemble the booking request from the current draft.

        Raises:
            ValidationError: If a required selection is missing
        """
        missing = self._missing_for_request()
        if missing:
            raise ValidationError(
                f"Booking is incomplete: missing {', '.join(missing)}", missing=missing
            )
        draft = self._draft
        procedure = self.selected_procedure
        return BookingRequest(
            patient_id=draft.patient.id,
            doctor_id=draft.doctor.id,
            clinic_id=self.settings.clinic_id,
            scheduled_datetime=draft.scheduled_datetime(self.settings.clinic_timezone),
            appointment_type=draft.appointment_type,
            reason=draft.reason or None,
            notes=draft.notes or None,
            urgent=draft.urgent,
            consultation_price=self.resolved_price,
            procedure_id=procedure.id if procedure else None,
            payment_method=draft.payment_method,
            create_invoice=draft.create_invoice,
        )

    async def submit(self) -> Appointment:
        """
        Send the booking to the clinic backend.

        On success the draft is reset and the wizard returns to the first
        step. On failure the draft and step are left untouched so the
        operator can correct and resubmit.

        Raises:
            SubmissionInProgressError: If a submission is already in flight
            ValidationError: If not on the confirm step or the draft is incomplete
            SubmissionFailure: If the backend rejected the booking
        """
        if self._submitting:
            raise SubmissionInProgressError("A submission is already in progress")
        if self._step != WizardStep.CONFIRM:
            raise ValidationError("Bookings can only be submitted from the confirmation step")

        request = self.build_request()
        self._submitting = True
        self._submission_error = None
        try:
            if self._appointment_id is not None:
                appointment = await self._backend.update_appointment(
                    self._appointment_id, request
                )
            else:
                appointment = await self._backend.create_appointment(request)
        except SubmissionFailure as e:
            self._submission_error = e
            logger.error(f"Booking submission failed ({e.category.value}): {e.detail}")
            raise
        finally:
            self._submitting = False

        logger.info(
            f"Booked appointment {appointment.id} ({request.appointment_type.label}): "
            f"patient {request.patient_id} with doctor {request.doctor_id} "
            f"at {request.scheduled_datetime.isoformat()}"
        )
        self._reset_draft()
        if self._on_success is not None:
            self._on_success(appointment)
        return appointment

    async def wait_for_lookups(self) -> None:
        """Wait for in-flight history and procedure lookups to settle."""
        await self._history.wait()
        await self._procedures.wait()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _today(self) -> datetime.date:
        return datetime.datetime.now(ZoneInfo(self.settings.clinic_timezone)).date()

    def _empty_draft(self) -> BookingDraft:
        return BookingDraft(date=self._default_date or self._today())

    def _reset_draft(self) -> None:
        # In-flight lookups belong to the discarded selections
        self._history.reset()
        self._procedures.reset()
        self._draft = self._empty_draft()
        self._date_chosen = False
        self._step = WizardStep.SELECT_PATIENT
        self._submission_error = None

    def _time_is_selectable(self, time: str) -> bool:
        draft = self._draft
        if self._schedule is None or draft.doctor is None or draft.date is None:
            return True
        if not self._schedule.has_day(draft.doctor.id, draft.date):
            return True
        return self._schedule.is_selectable(draft.doctor.id, draft.date, time)

    async def _fetch_history(self, patient_id: int) -> PatientHistorySummary:
        doctor_id = self._draft.doctor.id if self._draft.doctor else None
        return await self._analyzer.analyze(patient_id, doctor_id)

    def _on_history(self, patient_id: int, summary: PatientHistorySummary) -> None:
        # Pre-fill only while the operator has not picked a date or time
        suggested = summary.suggested_date
        if suggested is None or self._date_chosen or self._draft.time is not None:
            return
        if suggested < self._today():
            return
        logger.info(f"Pre-filling suggested return date {suggested} for patient {patient_id}")
        self._draft = self._draft.with_date(suggested)
