"""
Unit tests for the booking wizard controller.
"""

import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from scheduling.config import MULTIPLE_RETURNS_ADVISORY, Settings
from scheduling.errors import (
    FailureCategory,
    LookupFailure,
    SubmissionFailure,
    SubmissionInProgressError,
    ValidationError,
)
from scheduling.models.booking import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    PaymentMethod,
)
from scheduling.models.doctor import Doctor, Procedure
from scheduling.models.patient import Patient, PatientHistorySummary
from scheduling.services.schedule import ScheduleStateRepository
from scheduling.wizard import BookingWizard, LookupStatus, WizardStep

TZ = "America/Sao_Paulo"
DAY = date(2024, 3, 10)

P1 = Patient(id=1, first_name="Maria", last_name="Oliveira")
P2 = Patient(id=2, first_name="João", last_name="Santos")
P7 = Patient(id=7, first_name="Luiza", last_name="Ferreira")
D3 = Doctor(id=3, first_name="Ana", last_name="Souza", consultation_fee=Decimal("200.00"))
D4 = Doctor(id=4, first_name="Carlos", last_name="Lima")
BIOPSY = Procedure(id=101, name="Biópsia", price=Decimal("150.00"))


class FakeBackend:
    """
    In-memory collaborator whose lookups can be held open per key.

    Keys not gated resolve immediately.
    """

    def __init__(self):
        self.histories = {}
        self.procedures = {3: [BIOPSY], 4: []}
        self.history_gates = {}
        self.procedure_gates = {}
        self.history_error = None
        self.procedure_error = None
        self.submit_error = None
        self.submit_gate = None
        self.created = []
        self.updated = []

    async def get_patient_history(self, patient_id, doctor_id=None):
        gate = self.history_gates.get(patient_id)
        if gate is not None:
            await gate.wait()
        if self.history_error:
            raise self.history_error
        return self.histories.get(patient_id, PatientHistorySummary())

    async def list_doctor_procedures(self, doctor_id):
        gate = self.procedure_gates.get(doctor_id)
        if gate is not None:
            await gate.wait()
        if self.procedure_error:
            raise self.procedure_error
        return self.procedures.get(doctor_id, [])

    def _appointment(self, request, appointment_id):
        return Appointment(
            id=appointment_id,
            status=AppointmentStatus.SCHEDULED,
            **request.model_dump(exclude={"create_invoice"}),
        )

    async def create_appointment(self, request):
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error:
            raise self.submit_error
        self.created.append(request)
        return self._appointment(request, len(self.created))

    async def update_appointment(self, appointment_id, request):
        if self.submit_error:
            raise self.submit_error
        self.updated.append((appointment_id, request))
        return self._appointment(request, appointment_id)


@pytest.fixture
def settings():
    return Settings(clinic_id=1, clinic_timezone=TZ, follow_up_interval_days=30)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def wizard(backend, settings):
    return BookingWizard(backend, settings=settings, default_date=DAY)


async def fill_to_confirm(wizard, patient=P7, doctor=D3, time="09:30"):
    wizard.select_patient(patient)
    wizard.next()
    wizard.select_doctor(doctor)
    wizard.select_time(time)
    wizard.next()
    wizard.set_appointment_type(AppointmentType.CONSULTATION)
    wizard.next()
    await wizard.wait_for_lookups()


class TestGuards:
    """can_proceed reflects the selections of each step."""

    @pytest.mark.asyncio
    async def test_step_one_requires_patient(self, wizard):
        assert wizard.can_proceed(1) is False
        wizard.select_patient(P1)
        assert wizard.can_proceed(1) is True
        await wizard.wait_for_lookups()

    @pytest.mark.asyncio
    async def test_step_two_requires_doctor_and_time(self, wizard):
        assert wizard.can_proceed(2) is False
        wizard.select_doctor(D3)
        assert wizard.can_proceed(2) is False
        wizard.select_time("09:30")
        assert wizard.can_proceed(2) is True
        wizard.select_doctor(None)
        assert wizard.can_proceed(2) is False

    def test_step_three_requires_type(self, wizard):
        assert wizard.can_proceed(3) is False
        wizard.set_appointment_type(AppointmentType.FOLLOW_UP)
        assert wizard.can_proceed(3) is True

    def test_step_four_has_no_guard(self, wizard):
        assert wizard.can_proceed(4) is True

    @pytest.mark.asyncio
    async def test_guard_does_not_wait_for_lookup(self, wizard, backend):
        """The patient guard passes while the history lookup is pending."""
        backend.history_gates[1] = asyncio.Event()
        wizard.select_patient(P1)
        assert wizard.history.is_pending
        assert wizard.next() == WizardStep.SELECT_DOCTOR_TIME
        backend.history_gates[1].set()
        await wizard.wait_for_lookups()


class TestNavigation:
    def test_next_blocked_by_guard(self, wizard):
        with pytest.raises(ValidationError) as exc_info:
            wizard.next()
        assert exc_info.value.missing == ["patient"]
        assert wizard.step == WizardStep.SELECT_PATIENT

    @pytest.mark.asyncio
    async def test_next_never_skips(self, wizard):
        wizard.select_patient(P1)
        wizard.select_doctor(D3)
        wizard.select_time("10:00")
        wizard.set_appointment_type(AppointmentType.CONSULTATION)
        assert wizard.next() == WizardStep.SELECT_DOCTOR_TIME
        assert wizard.next() == WizardStep.DETAILS
        assert wizard.next() == WizardStep.CONFIRM
        with pytest.raises(ValidationError):
            wizard.next()
        assert wizard.step == WizardStep.CONFIRM

    @pytest.mark.asyncio
    async def test_back_decrements(self, wizard):
        await fill_to_confirm(wizard)
        assert wizard.back() == WizardStep.DETAILS
        assert wizard.back() == WizardStep.SELECT_DOCTOR_TIME
        assert wizard.back() == WizardStep.SELECT_PATIENT
        assert wizard.draft.patient == P7

    @pytest.mark.asyncio
    async def test_back_from_first_step_cancels(self, backend, settings):
        cancelled = []
        wizard = BookingWizard(
            backend, settings=settings, default_date=DAY, on_cancel=lambda: cancelled.append(True)
        )
        wizard.select_patient(P1)
        assert wizard.back() is None
        assert cancelled == [True]
        assert wizard.is_open is False
        assert wizard.draft.patient is None
        assert wizard.history.status == LookupStatus.IDLE

    def test_reopen_after_close(self, wizard):
        wizard.close()
        assert wizard.is_open is False
        wizard.open(date(2024, 3, 12))
        assert wizard.is_open is True
        assert wizard.step == WizardStep.SELECT_PATIENT
        assert wizard.draft.date == date(2024, 3, 12)


class TestLookups:
    """Selections start lookups whose state is observable independently."""

    @pytest.mark.asyncio
    async def test_history_success(self, wizard, backend):
        backend.histories[1] = PatientHistorySummary(returns_count_this_month=2)
        wizard.select_patient(P1)
        await wizard.wait_for_lookups()
        assert wizard.history.succeeded
        assert wizard.history_advisory == MULTIPLE_RETURNS_ADVISORY

    @pytest.mark.asyncio
    async def test_single_return_has_no_advisory(self, wizard, backend):
        backend.histories[1] = PatientHistorySummary(returns_count_this_month=1)
        wizard.select_patient(P1)
        await wizard.wait_for_lookups()
        assert wizard.history_advisory is None

    @pytest.mark.asyncio
    async def test_advisory_does_not_block(self, wizard, backend):
        backend.histories[7] = PatientHistorySummary(returns_count_this_month=3)
        await fill_to_confirm(wizard)
        appointment = await wizard.submit()
        assert appointment.patient_id == 7

    @pytest.mark.asyncio
    async def test_history_failure_degrades(self, wizard, backend):
        backend.history_error = LookupFailure("get_patient_history", "timeout")
        await fill_to_confirm(wizard)
        assert wizard.history.failed
        assert wizard.history_advisory is None
        assert wizard.can_submit

    @pytest.mark.asyncio
    async def test_procedure_lookup(self, wizard):
        wizard.select_doctor(D3)
        assert wizard.procedures.is_pending
        assert wizard.available_procedures == []
        await wizard.wait_for_lookups()
        assert wizard.procedures.succeeded
        assert wizard.available_procedures == [BIOPSY]

    @pytest.mark.asyncio
    async def test_procedure_failure_empty_catalog(self, wizard, backend):
        backend.procedure_error = LookupFailure("list_doctor_procedures", "500")
        wizard.select_doctor(D3)
        await wizard.wait_for_lookups()
        assert wizard.procedures.failed
        assert wizard.available_procedures == []

    @pytest.mark.asyncio
    async def test_stale_history_not_applied(self, wizard, backend):
        """P1's late history must not land on P2's state."""
        backend.history_gates[1] = asyncio.Event()
        backend.histories[1] = PatientHistorySummary(returns_count_this_month=4)
        backend.histories[2] = PatientHistorySummary(returns_count_this_month=0)

        wizard.select_patient(P1)
        wizard.select_patient(P2)
        await wizard.wait_for_lookups()
        assert wizard.history.key == 2
        assert wizard.history_advisory is None

        backend.history_gates[1].set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert wizard.history.key == 2
        assert wizard.history.data.returns_count_this_month == 0
        assert wizard.draft.patient == P2

    @pytest.mark.asyncio
    async def test_stale_procedures_not_applied(self, wizard, backend):
        backend.procedure_gates[3] = asyncio.Event()
        wizard.select_doctor(D3)
        wizard.select_doctor(D4)
        await wizard.wait_for_lookups()
        backend.procedure_gates[3].set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert wizard.procedures.key == 4
        assert wizard.available_procedures == []

    @pytest.mark.asyncio
    async def test_close_drops_pending_lookups(self, wizard, backend):
        backend.history_gates[1] = asyncio.Event()
        wizard.select_patient(P1)
        wizard.close()
        backend.history_gates[1].set()
        for _ in range(3):
            await asyncio.sleep(0)
        assert wizard.history.status == LookupStatus.IDLE
        assert wizard.draft.patient is None

    @pytest.mark.asyncio
    async def test_reopen_drops_pending_lookups(self, wizard, backend):
        """A history still in flight when the wizard reopens is not shown."""
        backend.history_gates[1] = asyncio.Event()
        backend.histories[1] = PatientHistorySummary(
            returns_count_this_month=3,
            suggested_date=datetime.now(ZoneInfo(TZ)).date() + timedelta(days=10),
        )
        backend.procedure_gates[3] = asyncio.Event()
        wizard.select_patient(P1)
        wizard.select_doctor(D3)

        wizard.open()
        backend.history_gates[1].set()
        backend.procedure_gates[3].set()
        for _ in range(3):
            await asyncio.sleep(0)

        assert wizard.history.status == LookupStatus.IDLE
        assert wizard.history_advisory is None
        assert wizard.procedures.status == LookupStatus.IDLE
        assert wizard.available_procedures == []
        assert wizard.draft.patient is None
        assert wizard.draft.date == DAY

    @pytest.mark.asyncio
    async def test_suggested_date_prefilled(self, wizard, backend, settings):
        suggested = datetime.now(ZoneInfo(TZ)).date() + timedelta(days=10)
        backend.histories[1] = PatientHistorySummary(suggested_date=suggested)
        wizard.select_patient(P1)
        await wizard.wait_for_lookups()
        assert wizard.draft.date == suggested

    @pytest.mark.asyncio
    async def test_suggested_date_does_not_override_choice(self, wizard, backend):
        suggested = datetime.now(ZoneInfo(TZ)).date() + timedelta(days=10)
        backend.histories[1] = PatientHistorySummary(suggested_date=suggested)
        backend.history_gates[1] = asyncio.Event()
        wizard.select_patient(P1)
        wizard.select_date(DAY)
        backend.history_gates[1].set()
        await wizard.wait_for_lookups()
        assert wizard.draft.date == DAY


class TestSelections:
    @pytest.mark.asyncio
    async def test_selecting_procedure_keeps_step(self, wizard):
        await fill_to_confirm(wizard)
        wizard.select_procedure(BIOPSY.id)
        assert wizard.step == WizardStep.CONFIRM
        assert wizard.selected_procedure == BIOPSY

    @pytest.mark.asyncio
    async def test_changing_date_clears_time(self, wizard):
        wizard.select_doctor(D3)
        wizard.select_time("09:30")
        wizard.select_date(date(2024, 3, 11))
        assert wizard.draft.time is None
        await wizard.wait_for_lookups()

    def test_malformed_time(self, wizard):
        with pytest.raises(ValidationError):
            wizard.select_time("25:00")

    def test_invalid_manual_price(self, wizard):
        with pytest.raises(ValidationError):
            wizard.set_manual_price("abc")

    @pytest.mark.asyncio
    async def test_schedule_rejects_booked_and_break(self, backend, settings):
        repository = ScheduleStateRepository(settings)
        repository.reconcile(
            3,
            DAY,
            [
                Appointment(
                    id=50,
                    patient_id=2,
                    doctor_id=3,
                    clinic_id=1,
                    scheduled_datetime=datetime(2024, 3, 10, 9, 30, tzinfo=ZoneInfo(TZ)),
                )
            ],
        )
        wizard = BookingWizard(
            backend, schedule_repository=repository, settings=settings, default_date=DAY
        )
        wizard.select_doctor(D3)
        with pytest.raises(ValidationError):
            wizard.select_time("09:30")
        with pytest.raises(ValidationError):
            wizard.select_time("12:15")
        wizard.select_time("09:45")
        assert wizard.draft.time == "09:45"
        await wizard.wait_for_lookups()

    @pytest.mark.asyncio
    async def test_suggested_follow_up(self, wizard):
        await fill_to_confirm(wizard)
        assert wizard.suggested_follow_up == DAY + timedelta(days=30)
        wizard.set_appointment_type(AppointmentType.EMERGENCY)
        assert wizard.suggested_follow_up is None


class TestPricing:
    @pytest.mark.asyncio
    async def test_procedure_price_wins(self, wizard):
        await fill_to_confirm(wizard)
        wizard.select_procedure(BIOPSY.id)
        wizard.set_manual_price("80.00")
        assert wizard.resolved_price == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_manual_price_over_fee(self, wizard):
        await fill_to_confirm(wizard)
        wizard.set_manual_price("80.00")
        assert wizard.resolved_price == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_doctor_fee(self, wizard):
        await fill_to_confirm(wizard)
        assert wizard.resolved_price == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_unpriced(self, wizard):
        await fill_to_confirm(wizard, doctor=D4)
        assert wizard.resolved_price is None
        request = wizard.build_request()
        assert request.consultation_price is None

    @pytest.mark.asyncio
    async def test_changing_doctor_clears_procedure(self, wizard):
        wizard.select_doctor(D3)
        await wizard.wait_for_lookups()
        wizard.select_procedure(BIOPSY.id)
        wizard.select_doctor(D4)
        assert wizard.draft.selected_procedure_id is None
        await wizard.wait_for_lookups()


class TestSubmission:
    @pytest.mark.asyncio
    async def test_request_shape(self, wizard):
        await fill_to_confirm(wizard)
        wizard.set_notes("Trazer exames")
        wizard.set_reason("Dor de cabeça")
        wizard.set_payment_method(PaymentMethod.CREDIT_CARD)
        wizard.set_create_invoice(True)
        wizard.set_urgent(True)

        request = wizard.build_request()
        assert request.patient_id == 7
        assert request.doctor_id == 3
        assert request.clinic_id == 1
        assert request.scheduled_datetime == datetime(2024, 3, 10, 9, 30, tzinfo=ZoneInfo(TZ))
        assert request.appointment_type == AppointmentType.CONSULTATION
        assert request.notes == "Trazer exames"
        assert request.reason == "Dor de cabeça"
        assert request.urgent is True
        assert request.consultation_price == Decimal("200.00")
        assert request.payment_method == PaymentMethod.CREDIT_CARD
        assert request.create_invoice is True

    @pytest.mark.asyncio
    async def test_success_resets(self, backend, settings):
        booked = []
        wizard = BookingWizard(
            backend, settings=settings, default_date=DAY, on_success=booked.append
        )
        await fill_to_confirm(wizard)
        appointment = await wizard.submit()

        assert appointment.id == 1
        assert booked == [appointment]
        assert len(backend.created) == 1
        assert wizard.step == WizardStep.SELECT_PATIENT
        assert wizard.draft.patient is None
        assert wizard.draft.doctor is None
        assert wizard.draft.time is None
        assert wizard.submission_error is None

    @pytest.mark.asyncio
    async def test_failure_preserves_draft(self, wizard, backend):
        await fill_to_confirm(wizard)
        draft = wizard.draft
        backend.submit_error = SubmissionFailure(FailureCategory.CONFLICT, "slot taken", 409)

        with pytest.raises(SubmissionFailure):
            await wizard.submit()

        assert wizard.step == WizardStep.CONFIRM
        assert wizard.draft == draft
        assert wizard.submission_error.category == FailureCategory.CONFLICT
        assert wizard.is_submitting is False
        assert wizard.can_submit is True

        backend.submit_error = None
        appointment = await wizard.submit()
        assert appointment.patient_id == 7
        assert wizard.submission_error is None

    @pytest.mark.asyncio
    async def test_no_double_submit(self, wizard, backend):
        await fill_to_confirm(wizard)
        backend.submit_gate = asyncio.Event()

        first = asyncio.create_task(wizard.submit())
        await asyncio.sleep(0)
        assert wizard.is_submitting
        assert wizard.can_submit is False
        with pytest.raises(SubmissionInProgressError):
            await wizard.submit()

        backend.submit_gate.set()
        await first
        assert len(backend.created) == 1

    @pytest.mark.asyncio
    async def test_submit_only_from_confirm(self, wizard):
        wizard.select_patient(P7)
        with pytest.raises(ValidationError):
            await wizard.submit()
        await wizard.wait_for_lookups()

    @pytest.mark.asyncio
    async def test_edit_uses_update(self, backend, settings):
        wizard = BookingWizard(backend, settings=settings, default_date=DAY, appointment_id=99)
        await fill_to_confirm(wizard)
        appointment = await wizard.submit()
        assert appointment.id == 99
        assert backend.created == []
        assert backend.updated[0][0] == 99
