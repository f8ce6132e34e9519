"""
Schedule State Repository.

Reconciles the appointments fetched for a doctor into the booked-slot
lookup consumed by the slot generator. The repository performs no I/O:
callers fetch appointments and hand them over after every create,
cancel or reschedule.
"""

import datetime
from typing import Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from loguru import logger

from scheduling.config import Settings, get_settings
from scheduling.models.booking import Appointment, AppointmentStatus, AppointmentType
from scheduling.models.schedule import (
    BreakWindow,
    DoctorSchedule,
    SlotStatus,
    TimeSlot,
    format_hhmm,
)
from scheduling.services.slots import generate_slots

# Higher wins when two appointments share a time
_STATUS_PRIORITY = {
    SlotStatus.TENTATIVE: 1,
    SlotStatus.BOOKED: 2,
    SlotStatus.URGENT: 3,
}


def slot_status_for(appointment: Appointment) -> Optional[SlotStatus]:
    """
    Map an appointment onto the slot status it imposes.

    Returns None when the appointment no longer occupies its slot.
    """
    if appointment.status == AppointmentStatus.CANCELLED:
        return None
    if appointment.urgent or appointment.appointment_type == AppointmentType.EMERGENCY:
        return SlotStatus.URGENT
    if appointment.status == AppointmentStatus.PENDING:
        return SlotStatus.TENTATIVE
    return SlotStatus.BOOKED


class ScheduleStateRepository:
    """
    Holds, per doctor and date, the reconciled booked-slot view.

    Booked, tentative and urgent slots are authoritative: they only change
    when ``reconcile`` is called with a new appointment list.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._booked: Dict[Tuple[int, datetime.date], Dict[str, TimeSlot]] = {}

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.settings.clinic_timezone)

    @property
    def break_window(self) -> Optional[BreakWindow]:
        """Configured break window, if both ends are set."""
        if self.settings.break_start and self.settings.break_end:
            return BreakWindow(start=self.settings.break_start, end=self.settings.break_end)
        return None

    def reconcile(
        self,
        doctor_id: int,
        date: datetime.date,
        appointments: Iterable[Appointment],
    ) -> Dict[str, TimeSlot]:
        """
        Replace the booked-slot view of a doctor's day.

        Args:
            doctor_id: Doctor whose day is reconciled
            date: Local clinic date
            appointments: Raw appointments as fetched (may include other
                doctors or dates, which are ignored)

        Returns:
            The booked-slot lookup keyed by HH:mm
        """
        booked: Dict[str, TimeSlot] = {}
        tz = self.timezone

        for appointment in appointments:
            if appointment.doctor_id != doctor_id:
                continue
            local = appointment.scheduled_datetime
            if local.tzinfo is not None:
                local = local.astimezone(tz)
            if local.date() != date:
                continue

            status = slot_status_for(appointment)
            if status is None:
                continue

            time = format_hhmm(local.hour * 60 + local.minute)
            existing = booked.get(time)
            if existing is not None and _STATUS_PRIORITY[existing.status] >= _STATUS_PRIORITY[status]:
                logger.warning(
                    f"Doctor {doctor_id} has overlapping appointments at {date} {time}: "
                    f"keeping {existing.appointment_id}, ignoring {appointment.id}"
                )
                continue

            booked[time] = TimeSlot(
                time=time,
                status=status,
                appointment_id=appointment.id,
                patient_name=appointment.patient_name,
            )

        self._booked[(doctor_id, date)] = booked
        logger.debug(f"Reconciled {len(booked)} booked slots for doctor {doctor_id} on {date}")
        return dict(booked)

    def has_day(self, doctor_id: int, date: datetime.date) -> bool:
        """Whether a doctor's day has been reconciled."""
        return (doctor_id, date) in self._booked

    def booked_slots(self, doctor_id: int, date: datetime.date) -> Dict[str, TimeSlot]:
        """Booked-slot lookup for a doctor's day (empty if never reconciled)."""
        return dict(self._booked.get((doctor_id, date), {}))

    def schedule(
        self,
        doctor_id: int,
        date: datetime.date,
        doctor_name: Optional[str] = None,
        start_hour: Optional[int] = None,
        end_hour: Optional[int] = None,
        interval_minutes: Optional[int] = None,
    ) -> DoctorSchedule:
        """
        Build the full slot view of a doctor's day.

        Working hours and interval default to the configured values.
        """
        break_window = self.break_window
        slots = generate_slots(
            date,
            start_hour if start_hour is not None else self.settings.schedule_start_hour,
            end_hour if end_hour is not None else self.settings.schedule_end_hour,
            interval_minutes or self.settings.slot_interval_minutes,
            break_window=break_window,
            booked_slots=self._booked.get((doctor_id, date), {}),
        )
        return DoctorSchedule(
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            date=date,
            slots=slots,
            break_start=break_window.start if break_window else None,
            break_end=break_window.end if break_window else None,
        )

    def is_selectable(self, doctor_id: int, date: datetime.date, time: str) -> bool:
        """
        Check whether a time can be booked on a doctor's day.

        Times that are not on the configured grid are not selectable.
        """
        slot = self.schedule(doctor_id, date).slot_at(time)
        return slot is not None and slot.selectable

    def invalidate(self, doctor_id: int, date: Optional[datetime.date] = None) -> None:
        """Drop reconciled days for a doctor, forcing a new fetch."""
        keys = [
            key
            for key in self._booked
            if key[0] == doctor_id and (date is None or key[1] == date)
        ]
        for key in keys:
            del self._booked[key]
