"""
Clinic API Server.

A FastAPI-based reference implementation of the clinic backend consumed by
the scheduling core: doctors, procedure catalogs, patients, patient history
and appointments. Data lives in memory.
"""

import asyncio
import datetime
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel

from scheduling.config import Settings, get_settings
from scheduling.models.booking import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingRequest,
)
from scheduling.models.doctor import Doctor, Procedure
from scheduling.models.patient import Patient, PatientHistorySummary
from scheduling.models.schedule import DoctorSchedule
from scheduling.services.schedule import ScheduleStateRepository

# ============================================================================
# Request Models
# ============================================================================


class StatusUpdateRequest(BaseModel):
    """Request to move an appointment to a new status."""

    status: AppointmentStatus


class RescheduleRequest(BaseModel):
    """Request to move an appointment to a new timestamp."""

    scheduled_datetime: datetime.datetime


class CancelRequest(BaseModel):
    """Request to cancel an appointment."""

    reason: Optional[str] = None


# ============================================================================
# In-Memory Data Store (Replace with PostgreSQL in production)
# ============================================================================


class ClinicStore:
    """
    In-memory clinic data with lock-protected appointment mutations.

    Args:
        settings: Application settings (clinic time zone, break window, ...)
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._doctors: Dict[int, Doctor] = {}
        self._procedures: Dict[int, List[Procedure]] = {}
        self._patients: Dict[int, Patient] = {}
        self._appointments: Dict[int, Appointment] = {}
        self._next_appointment_id = 1
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.settings.clinic_timezone)

    def now(self) -> datetime.datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.datetime.now(self.tz)

    # Public accessors for testing
    @property
    def doctors(self) -> Dict[int, Doctor]:
        return self._doctors

    @property
    def patients(self) -> Dict[int, Patient]:
        return self._patients

    @property
    def appointments(self) -> Dict[int, Appointment]:
        return self._appointments

    def procedures_for(self, doctor_id: int) -> List[Procedure]:
        return list(self._procedures.get(doctor_id, []))

    def clear(self) -> None:
        """Drop every record."""
        self._doctors.clear()
        self._procedures.clear()
        self._patients.clear()
        self._appointments.clear()
        self._next_appointment_id = 1
        self._initialized = False

    def _initialize_sample_data(self) -> None:
        """Initialize sample directory data synchronously."""
        doctors = [
            Doctor(id=1, first_name="Ana", last_name="Souza", specialty="Clínico Geral",
                   consultation_fee=Decimal("200.00")),
            Doctor(id=2, first_name="Carlos", last_name="Lima", specialty="Dermatologia",
                   consultation_fee=Decimal("250.00")),
            Doctor(id=3, first_name="Beatriz", last_name="Rocha", specialty="Cardiologia"),
        ]
        self._doctors = {doctor.id: doctor for doctor in doctors}

        self._procedures = {
            1: [
                Procedure(id=101, name="Eletrocardiograma", price=Decimal("120.00"),
                          code="40101010", category="Exame"),
                Procedure(id=102, name="Curativo simples", price=Decimal("60.00"),
                          category="Procedimento"),
            ],
            2: [
                Procedure(id=201, name="Biópsia de pele", price=Decimal("150.00"),
                          code="40808017", category="Procedimento"),
                Procedure(id=202, name="Crioterapia", price=Decimal("180.00"),
                          category="Procedimento"),
            ],
            3: [],
        }

        patients = [
            Patient(id=1, first_name="Maria", last_name="Oliveira", cpf="123.456.789-09",
                    birthdate=datetime.date(1985, 4, 12), phone="(11) 98765-4321"),
            Patient(id=2, first_name="João", last_name="Santos", cpf="987.654.321-00",
                    birthdate=datetime.date(1972, 11, 3)),
            Patient(id=3, first_name="Luiza", last_name="Ferreira",
                    email="luiza.ferreira@example.com"),
            Patient(id=4, first_name="Pedro", last_name="Almeida",
                    birthdate=datetime.date(2001, 1, 30)),
        ]
        self._patients = {patient.id: patient for patient in patients}
        self._initialized = True

    async def initialize(self) -> None:
        """Initialize with sample data."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return
            self._initialize_sample_data()
            logger.info(
                f"Initialized {len(self._doctors)} doctors and {len(self._patients)} patients"
            )

    def add_appointment(self, appointment: Appointment) -> Appointment:
        """Insert an appointment as-is (seeding and tests)."""
        self._appointments[appointment.id] = appointment
        self._next_appointment_id = max(self._next_appointment_id, appointment.id + 1)
        return appointment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _local(self, value: datetime.datetime) -> datetime.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def list_appointments(
        self,
        start_date: Optional[datetime.datetime] = None,
        end_date: Optional[datetime.datetime] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """Get appointments matching criteria, ordered by time."""
        start = self._local(start_date) if start_date else None
        end = self._local(end_date) if end_date else None

        results = []
        for appointment in self._appointments.values():
            when = self._local(appointment.scheduled_datetime)
            if start is not None and when < start:
                continue
            if end is not None and when >= end:
                continue
            if doctor_id is not None and appointment.doctor_id != doctor_id:
                continue
            if patient_id is not None and appointment.patient_id != patient_id:
                continue
            if status is not None and appointment.status != status:
                continue
            results.append(appointment)

        results.sort(key=lambda a: (self._local(a.scheduled_datetime), a.id))
        return results

    def doctor_schedule(self, doctor_id: int, date: datetime.date) -> DoctorSchedule:
        """Reconcile a doctor's appointments into the day's slot view."""
        repository = ScheduleStateRepository(self.settings)
        repository.reconcile(doctor_id, date, self.list_appointments(doctor_id=doctor_id))
        doctor = self._doctors.get(doctor_id)
        return repository.schedule(
            doctor_id, date, doctor_name=doctor.display_name if doctor else None
        )

    def patient_history(
        self, patient_id: int, doctor_id: Optional[int] = None
    ) -> PatientHistorySummary:
        """
        Compute a patient's return-visit statistics.

        Returns are non-cancelled follow-up appointments. The suggested date
        is the last past visit plus the configured follow-up interval.
        """
        now = self.now().astimezone(self.tz)
        visits = [
            a
            for a in self.list_appointments(patient_id=patient_id, doctor_id=doctor_id)
            if a.status != AppointmentStatus.CANCELLED
        ]

        past_dates = [
            self._local(a.scheduled_datetime).date()
            for a in visits
            if self._local(a.scheduled_datetime) <= now
        ]
        last_date = max(past_dates) if past_dates else None

        returns = [a for a in visits if a.appointment_type == AppointmentType.FOLLOW_UP]
        this_month = [
            a
            for a in returns
            if (self._local(a.scheduled_datetime).year, self._local(a.scheduled_datetime).month)
            == (now.year, now.month)
        ]

        suggested = None
        if last_date is not None:
            suggested = last_date + datetime.timedelta(days=self.settings.follow_up_interval_days)

        return PatientHistorySummary(
            last_appointment_date=last_date,
            returns_count_this_month=len(this_month),
            returns_count_total=len(returns),
            suggested_date=suggested,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _check_slot(
        self,
        doctor_id: int,
        when: datetime.datetime,
        ignore_id: Optional[int] = None,
    ) -> None:
        local = self._local(when)
        repository = ScheduleStateRepository(self.settings)
        break_window = repository.break_window
        time = local.strftime("%H:%M")
        if break_window is not None and break_window.contains(time):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"{time} falls within the break window",
            )
        for other in self._appointments.values():
            if other.id == ignore_id or other.doctor_id != doctor_id:
                continue
            if other.status == AppointmentStatus.CANCELLED:
                continue
            if self._local(other.scheduled_datetime) == local:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Doctor {doctor_id} already has an appointment at {local.isoformat()}",
                )

    def _check_references(self, request: BookingRequest) -> Patient:
        patient = self._patients.get(request.patient_id)
        if patient is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
        if request.doctor_id not in self._doctors:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
        return patient

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found"
            )
        return appointment

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        async with self._lock:
            patient = self._check_references(request)
            self._check_slot(request.doctor_id, request.scheduled_datetime)
            appointment = Appointment(
                id=self._next_appointment_id,
                patient_name=patient.full_name,
                status=AppointmentStatus.SCHEDULED,
                **request.model_dump(exclude={"create_invoice"}),
            )
            self._next_appointment_id += 1
            self._appointments[appointment.id] = appointment

        logger.info(
            f"Appointment {appointment.id} created for patient {appointment.patient_id} "
            f"with doctor {appointment.doctor_id} at {appointment.scheduled_datetime.isoformat()}"
            + (" (invoice requested)" if request.create_invoice else "")
        )
        return appointment

    async def update_appointment(self, appointment_id: int, request: BookingRequest) -> Appointment:
        async with self._lock:
            current = self._get_appointment(appointment_id)
            patient = self._check_references(request)
            self._check_slot(request.doctor_id, request.scheduled_datetime, ignore_id=appointment_id)
            appointment = Appointment(
                id=appointment_id,
                patient_name=patient.full_name,
                status=current.status,
                **request.model_dump(exclude={"create_invoice"}),
            )
            self._appointments[appointment_id] = appointment
        return appointment

    async def update_status(self, appointment_id: int, new_status: AppointmentStatus) -> Appointment:
        async with self._lock:
            current = self._get_appointment(appointment_id)
            if current.status == AppointmentStatus.CANCELLED:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cancelled appointments cannot change status",
                )
            appointment = current.model_copy(update={"status": new_status})
            self._appointments[appointment_id] = appointment
        logger.info(f"Appointment {appointment_id} moved to {new_status.value}")
        return appointment

    async def reschedule(
        self, appointment_id: int, scheduled_datetime: datetime.datetime
    ) -> Appointment:
        async with self._lock:
            current = self._get_appointment(appointment_id)
            if current.status == AppointmentStatus.CANCELLED:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cancelled appointments cannot be rescheduled",
                )
            when = self._local(scheduled_datetime)
            self._check_slot(current.doctor_id, when, ignore_id=appointment_id)
            appointment = current.model_copy(update={"scheduled_datetime": when})
            self._appointments[appointment_id] = appointment
        logger.info(f"Appointment {appointment_id} rescheduled to {when.isoformat()}")
        return appointment

    async def cancel(self, appointment_id: int, reason: Optional[str] = None) -> Appointment:
        async with self._lock:
            current = self._get_appointment(appointment_id)
            notes = current.notes
            if reason:
                notes = f"{notes}\nCancelado: {reason}" if notes else f"Cancelado: {reason}"
            appointment = current.model_copy(
                update={"status": AppointmentStatus.CANCELLED, "notes": notes}
            )
            self._appointments[appointment_id] = appointment
        logger.info(f"Appointment {appointment_id} cancelled")
        return appointment


# Global store instance
store = ClinicStore()


# ============================================================================
# FastAPI Application
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Clinic API Server")
    await store.initialize()
    yield
    # Shutdown
    logger.info("Shutting down Clinic API Server")


app = FastAPI(
    title="Clinic Scheduling API",
    description="Reference backend for doctors, patients and appointments",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# API Endpoints
# ============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": store.now().isoformat()}


@app.get("/api/v1/doctors", response_model=List[Doctor])
async def list_doctors():
    """List the clinic's doctors."""
    return list(store.doctors.values())


@app.get("/api/v1/doctors/{doctor_id}/procedures", response_model=List[Procedure])
async def list_doctor_procedures(doctor_id: int):
    """List a doctor's billable procedures."""
    if doctor_id not in store.doctors:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
    return store.procedures_for(doctor_id)


@app.get("/api/v1/doctors/{doctor_id}/schedule", response_model=DoctorSchedule)
async def get_doctor_schedule(
    doctor_id: int,
    date: datetime.date = Query(..., description="Local clinic date"),
):
    """Get a doctor's reconciled slot view for one date."""
    if doctor_id not in store.doctors:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")
    return store.doctor_schedule(doctor_id, date)


@app.get("/api/v1/patients", response_model=List[Patient])
async def search_patients(
    search: Optional[str] = Query(default=None, description="Name, CPF, phone or email"),
):
    """Search patients (all patients without a query)."""
    patients = list(store.patients.values())
    if search:
        patients = [p for p in patients if p.matches(search)]
    return patients


@app.get("/api/v1/patients/{patient_id}/history", response_model=PatientHistorySummary)
async def get_patient_history(
    patient_id: int,
    doctor_id: Optional[int] = Query(default=None, description="Scope to a doctor"),
):
    """Get a patient's return-visit statistics."""
    if patient_id not in store.patients:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return store.patient_history(patient_id, doctor_id)


@app.get("/api/v1/appointments", response_model=List[Appointment])
async def list_appointments(
    start_date: Optional[datetime.datetime] = Query(default=None, description="Range start"),
    end_date: Optional[datetime.datetime] = Query(default=None, description="Range end"),
    doctor_id: Optional[int] = Query(default=None, description="Filter by doctor"),
    patient_id: Optional[int] = Query(default=None, description="Filter by patient"),
    status: Optional[AppointmentStatus] = Query(default=None, description="Filter by status"),
):
    """List appointments by date range, doctor, patient or status."""
    return store.list_appointments(start_date, end_date, doctor_id, patient_id, status)


@app.post(
    "/api/v1/appointments",
    response_model=Appointment,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(request: BookingRequest):
    """
    Create an appointment.

    Rejects times inside the break window (422) and times already
    occupied for the doctor (409).
    """
    return await store.create_appointment(request)


@app.put("/api/v1/appointments/{appointment_id}", response_model=Appointment)
async def update_appointment(appointment_id: int, request: BookingRequest):
    """Replace an appointment's booking data."""
    return await store.update_appointment(appointment_id, request)


@app.patch("/api/v1/appointments/{appointment_id}/status", response_model=Appointment)
async def update_appointment_status(appointment_id: int, request: StatusUpdateRequest):
    """Move an appointment to a new status."""
    return await store.update_status(appointment_id, request.status)


@app.post("/api/v1/appointments/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(appointment_id: int, request: RescheduleRequest):
    """Move an appointment to a new timestamp."""
    return await store.reschedule(appointment_id, request.scheduled_datetime)


@app.post("/api/v1/appointments/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(appointment_id: int, request: CancelRequest = CancelRequest()):
    """Cancel an appointment, freeing its slot."""
    return await store.cancel(appointment_id, request.reason)


# ============================================================================
# Run Server
# ============================================================================


def run_server(host: str = "0.0.0.0", port: int = 8080):
    """Run the clinic API server."""
    import uvicorn

    uvicorn.run(
        "scheduling.api.clinic_server:app",
        host=host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
