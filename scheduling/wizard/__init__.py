"""
Booking wizard for the clinic scheduling core.

This module implements the four-step booking workflow and the tracked
asynchronous lookups it coordinates.
"""

from .controller import BookingBackend, BookingWizard, WizardStep
from .lookups import LookupState, LookupStatus, TrackedLookup

__all__ = [
    "BookingBackend",
    "BookingWizard",
    "LookupState",
    "LookupStatus",
    "TrackedLookup",
    "WizardStep",
]
