"""
Availability slot generation.

Enumerates a doctor's working day at a fixed interval and decides the
status of every tick from the break window and the known bookings.
"""

import datetime
from typing import List, Mapping, Optional

from scheduling.models.schedule import BreakWindow, SlotStatus, TimeSlot, format_hhmm

# Statuses a booking can impose on a tick
_BOOKING_STATUSES = (SlotStatus.BOOKED, SlotStatus.TENTATIVE, SlotStatus.URGENT)


def generate_slots(
    date: datetime.date,
    start_hour: int,
    end_hour: int,
    interval_minutes: int,
    break_window: Optional[BreakWindow] = None,
    booked_slots: Optional[Mapping[str, TimeSlot]] = None,
) -> List[TimeSlot]:
    """
    Produce the ordered slots of one working day.

    Ticks run from ``start_hour:00`` up to, not including, ``end_hour:00``.
    A tick inside the break window is always ``break``. Otherwise a booked
    slot at the exact same time lends the tick its status and appointment
    binding. Every remaining tick is ``available``.

    Args:
        date: The day being generated (ticks do not depend on it)
        start_hour: First working hour (0-23)
        end_hour: Hour the working day ends (1-24), exclusive
        interval_minutes: Spacing between ticks
        break_window: Optional [start, end) range excluded from booking
        booked_slots: Known bookings keyed by HH:mm time

    Returns:
        ``(end_hour - start_hour) * 60 // interval_minutes`` slots in time order
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")
    if not 0 <= start_hour < end_hour <= 24:
        raise ValueError(
            f"Invalid working hours {start_hour}-{end_hour} for {date.isoformat()}"
        )

    booked_slots = booked_slots or {}
    total_minutes = (end_hour - start_hour) * 60
    slot_count = total_minutes // interval_minutes

    slots: List[TimeSlot] = []
    for index in range(slot_count):
        time = format_hhmm(start_hour * 60 + index * interval_minutes)

        if break_window is not None and break_window.contains(time):
            slots.append(TimeSlot(time=time, status=SlotStatus.BREAK))
            continue

        booked = booked_slots.get(time)
        if booked is not None and booked.status in _BOOKING_STATUSES:
            slots.append(
                TimeSlot(
                    time=time,
                    status=booked.status,
                    appointment_id=booked.appointment_id,
                    patient_name=booked.patient_name,
                )
            )
            continue

        slots.append(TimeSlot(time=time, status=SlotStatus.AVAILABLE))

    return slots
