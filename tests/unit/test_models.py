"""
Unit tests for the patient, doctor and booking draft models.
"""

from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from scheduling.models.booking import AppointmentType, BookingDraft, PaymentMethod
from scheduling.models.doctor import Doctor
from scheduling.models.patient import Patient

MARIA = Patient(id=7, first_name="Maria", last_name="Oliveira", cpf="123.456.789-09")
ANA = Doctor(id=3, first_name="Ana", last_name="Souza", consultation_fee=Decimal("200"))


class TestPatient:
    """Test patient directory model."""

    def test_names_stripped(self):
        patient = Patient(id=1, first_name="  Jean-Pierre ", last_name=" D'Angelo")
        assert patient.first_name == "Jean-Pierre"
        assert patient.last_name == "D'Angelo"
        assert patient.full_name == "Jean-Pierre D'Angelo"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            Patient(id=1, first_name="   ", last_name="Souza")

    def test_formatted_birthdate(self):
        """Birthdate formats as DD/MM/YYYY."""
        patient = Patient(id=1, first_name="Hélène", last_name="Bézier", birthdate=date(1990, 3, 5))
        assert patient.formatted_birthdate == "05/03/1990"

    def test_formatted_birthdate_none(self):
        assert MARIA.formatted_birthdate is None

    @pytest.mark.parametrize("query", ["maria", "OLIVEIRA", "12345678909", "123.456", ""])
    def test_matches(self, query):
        assert MARIA.matches(query)

    def test_does_not_match(self):
        assert not MARIA.matches("joão")


class TestDoctor:
    def test_display_name(self):
        assert ANA.display_name == "Dr(a). Ana Souza"

    def test_negative_fee_rejected(self):
        with pytest.raises(ValidationError):
            Doctor(id=1, first_name="A", last_name="B", consultation_fee=Decimal("-1"))


class TestCatalogLabels:
    def test_appointment_type_label(self):
        assert AppointmentType.FOLLOW_UP.label == "Retorno"

    def test_payment_method_label(self):
        assert PaymentMethod.INSURANCE.label == "Convênio"
        assert PaymentMethod.PIX.label == "PIX"


class TestBookingDraft:
    """Drafts are immutable and updated through with_* copies."""

    def test_empty_draft(self):
        draft = BookingDraft()
        assert draft.patient is None
        assert draft.doctor is None
        assert draft.time is None
        assert draft.appointment_type is None
        assert draft.urgent is False
        assert draft.create_invoice is False
        assert draft.is_submittable is False

    def test_with_returns_new_draft(self):
        draft = BookingDraft()
        updated = draft.with_patient(MARIA)
        assert updated is not draft
        assert draft.patient is None
        assert updated.patient == MARIA

    def test_frozen(self):
        draft = BookingDraft()
        with pytest.raises(ValidationError):
            draft.urgent = True

    def test_chained_updates(self):
        draft = (
            BookingDraft()
            .with_patient(MARIA)
            .with_doctor(ANA)
            .with_date(date(2024, 3, 10))
            .with_time("09:30")
            .with_appointment_type(AppointmentType.CONSULTATION)
            .with_notes("Trazer exames")
            .with_urgent(True)
            .with_payment_method(PaymentMethod.PIX)
            .with_create_invoice(True)
            .with_manual_price("80,00")
        )
        assert draft.is_submittable
        assert draft.manual_price == Decimal("80.00")
        assert draft.payment_method == PaymentMethod.PIX
        assert draft.notes == "Trazer exames"

    def test_missing_for_submission(self):
        draft = BookingDraft().with_patient(MARIA).with_date(date(2024, 3, 10))
        assert draft.missing_for_submission == ["doctor", "time"]

    def test_invalid_time_rejected(self):
        with pytest.raises(ValidationError):
            BookingDraft().with_time("9:30")

    def test_invalid_manual_price_rejected(self):
        with pytest.raises(ValidationError):
            BookingDraft().with_manual_price("-5")

    def test_changing_doctor_clears_procedure(self):
        other = Doctor(id=4, first_name="Carlos", last_name="Lima")
        draft = BookingDraft().with_doctor(ANA).with_procedure(101)
        assert draft.with_doctor(ANA).selected_procedure_id == 101
        assert draft.with_doctor(other).selected_procedure_id is None

    def test_scheduled_datetime_in_clinic_time(self):
        """P7 with D3 on 2024-03-10 at 09:30 books 2024-03-10T09:30 local time."""
        draft = (
            BookingDraft()
            .with_patient(MARIA)
            .with_doctor(ANA)
            .with_date(date(2024, 3, 10))
            .with_time("09:30")
        )
        scheduled = draft.scheduled_datetime("America/Sao_Paulo")
        assert scheduled == datetime(2024, 3, 10, 9, 30, tzinfo=ZoneInfo("America/Sao_Paulo"))
        assert scheduled.isoformat() == "2024-03-10T09:30:00-03:00"

    def test_scheduled_datetime_requires_time(self):
        with pytest.raises(ValueError):
            BookingDraft(date=date(2024, 3, 10)).scheduled_datetime("America/Sao_Paulo")
