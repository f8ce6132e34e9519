"""
Clinic API Client - Client for the clinic backend.

This service handles all communication with the clinic backend that owns
doctors, patients, procedures and appointments. It uses connection pooling
and async operations so lookups never block the booking wizard.
"""

import datetime
from typing import Any, Callable, List, Optional, TypeVar

import httpx
from loguru import logger
from pydantic import TypeAdapter

from scheduling.config import Settings, get_settings
from scheduling.errors import FailureCategory, LookupFailure, SubmissionFailure
from scheduling.models.booking import Appointment, AppointmentStatus, BookingRequest
from scheduling.models.doctor import Doctor, Procedure
from scheduling.models.patient import Patient, PatientHistorySummary
from scheduling.models.schedule import DoctorSchedule

T = TypeVar("T")

_DOCTORS = TypeAdapter(List[Doctor])
_PROCEDURES = TypeAdapter(List[Procedure])
_PATIENTS = TypeAdapter(List[Patient])
_APPOINTMENTS = TypeAdapter(List[Appointment])


def _error_detail(response: httpx.Response) -> str:
    """Extract the collaborator's error message from a response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and "detail" in data:
        detail = data["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return str(data)


class ClinicApiClient:
    """
    Async client for the clinic backend.

    Read operations raise LookupFailure; mutations raise SubmissionFailure
    with a category describing why the backend refused them. No call is
    retried here: retry policy belongs to the caller.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.clinic_api_url,
                timeout=httpx.Timeout(self.settings.clinic_api_timeout),
                limits=httpx.Limits(
                    max_connections=self.settings.connection_pool_size,
                    max_keepalive_connections=self.settings.connection_pool_size // 2,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ClinicApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get(
        self,
        operation: str,
        path: str,
        parse: Callable[[Any], T],
        params: Optional[dict] = None,
    ) -> T:
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return parse(response.json())
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.warning(f"{operation} returned {e.response.status_code}: {detail}")
            raise LookupFailure(operation, detail) from e
        except httpx.RequestError as e:
            logger.warning(f"{operation} request error: {e!r}")
            raise LookupFailure(operation, str(e) or e.__class__.__name__) from e
        except ValueError as e:
            logger.warning(f"{operation} returned an invalid body: {e}")
            raise LookupFailure(operation, "invalid response body") from e

    async def list_doctors(self) -> List[Doctor]:
        """List the clinic's doctors with their consultation fees."""
        doctors = await self._get("list_doctors", "/api/v1/doctors", _DOCTORS.validate_python)
        logger.info(f"Loaded {len(doctors)} doctors")
        return doctors

    async def list_doctor_procedures(self, doctor_id: int) -> List[Procedure]:
        """
        Fetch the billable procedure catalog of a doctor.

        Args:
            doctor_id: The doctor whose catalog is requested

        Returns:
            List of procedures with their prices
        """
        procedures = await self._get(
            "list_doctor_procedures",
            f"/api/v1/doctors/{doctor_id}/procedures",
            _PROCEDURES.validate_python,
        )
        logger.info(f"Loaded {len(procedures)} procedures for doctor {doctor_id}")
        return procedures

    async def search_patients(self, query: Optional[str] = None) -> List[Patient]:
        """Search patients by name, CPF, phone or email (all when no query)."""
        params = {"search": query} if query else None
        return await self._get(
            "search_patients", "/api/v1/patients", _PATIENTS.validate_python, params=params
        )

    async def get_patient_history(
        self, patient_id: int, doctor_id: Optional[int] = None
    ) -> PatientHistorySummary:
        """
        Fetch a patient's return-visit statistics.

        Args:
            patient_id: The patient to look up
            doctor_id: Optional doctor to scope the statistics to

        Returns:
            Raw history summary as computed by the backend
        """
        params = {"doctor_id": doctor_id} if doctor_id is not None else None
        return await self._get(
            "get_patient_history",
            f"/api/v1/patients/{patient_id}/history",
            PatientHistorySummary.model_validate,
            params=params,
        )

    async def list_appointments(
        self,
        start_date: Optional[datetime.datetime] = None,
        end_date: Optional[datetime.datetime] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        """
        List appointments matching the given filters.

        Args:
            start_date: Start of the date range (inclusive)
            end_date: End of the date range (exclusive)
            doctor_id: Optional filter by doctor
            patient_id: Optional filter by patient
            status: Optional filter by appointment status

        Returns:
            List of appointments ordered by scheduled time
        """
        params: dict = {}
        if start_date is not None:
            params["start_date"] = start_date.isoformat()
        if end_date is not None:
            params["end_date"] = end_date.isoformat()
        if doctor_id is not None:
            params["doctor_id"] = doctor_id
        if patient_id is not None:
            params["patient_id"] = patient_id
        if status is not None:
            params["status"] = status.value

        appointments = await self._get(
            "list_appointments",
            "/api/v1/appointments",
            _APPOINTMENTS.validate_python,
            params=params,
        )
        logger.info(f"Found {len(appointments)} appointments for filters {params}")
        return appointments

    async def get_doctor_schedule(self, doctor_id: int, date: datetime.date) -> DoctorSchedule:
        """Fetch a doctor's day as reconciled by the backend."""
        return await self._get(
            "get_doctor_schedule",
            f"/api/v1/doctors/{doctor_id}/schedule",
            DoctorSchedule.model_validate,
            params={"date": date.isoformat()},
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _send(
        self, operation: str, method: str, path: str, payload: Optional[dict] = None
    ) -> Appointment:
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=payload)
            response.raise_for_status()
            return Appointment.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            detail = _error_detail(e.response)
            logger.error(f"{operation} rejected with {e.response.status_code}: {detail}")
            raise SubmissionFailure.from_status(e.response.status_code, detail) from e
        except httpx.RequestError as e:
            logger.error(f"{operation} request error: {e!r}")
            raise SubmissionFailure(
                FailureCategory.NETWORK, str(e) or e.__class__.__name__
            ) from e
        except ValueError as e:
            logger.error(f"{operation} returned an invalid body: {e}")
            raise SubmissionFailure(FailureCategory.SERVER, "invalid response body") from e

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        """Create an appointment from a confirmed booking request."""
        appointment = await self._send(
            "create_appointment",
            "POST",
            "/api/v1/appointments",
            request.model_dump(mode="json", exclude_none=True),
        )
        logger.info(f"Created appointment {appointment.id} at {appointment.scheduled_datetime}")
        return appointment

    async def update_appointment(
        self, appointment_id: int, request: BookingRequest
    ) -> Appointment:
        """Replace an existing appointment's booking data."""
        return await self._send(
            "update_appointment",
            "PUT",
            f"/api/v1/appointments/{appointment_id}",
            request.model_dump(mode="json", exclude_none=True),
        )

    async def update_status(
        self, appointment_id: int, status: AppointmentStatus
    ) -> Appointment:
        """Move an appointment to a new status (check-in, completion, ...)."""
        return await self._send(
            "update_status",
            "PATCH",
            f"/api/v1/appointments/{appointment_id}/status",
            {"status": status.value},
        )

    async def reschedule(
        self, appointment_id: int, scheduled_datetime: datetime.datetime
    ) -> Appointment:
        """Move an appointment to a new timestamp."""
        return await self._send(
            "reschedule",
            "POST",
            f"/api/v1/appointments/{appointment_id}/reschedule",
            {"scheduled_datetime": scheduled_datetime.isoformat()},
        )

    async def cancel(self, appointment_id: int, reason: Optional[str] = None) -> Appointment:
        """Cancel an appointment, freeing its slot."""
        payload = {"reason": reason} if reason else {}
        return await self._send(
            "cancel",
            "POST",
            f"/api/v1/appointments/{appointment_id}/cancel",
            payload,
        )


# Singleton instance for reuse
_clinic_api_client: Optional[ClinicApiClient] = None


def get_clinic_api_client() -> ClinicApiClient:
    """Get the singleton clinic API client instance."""
    global _clinic_api_client
    if _clinic_api_client is None:
        _clinic_api_client = ClinicApiClient()
    return _clinic_api_client
