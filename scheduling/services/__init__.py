"""
Services layer for the clinic scheduling core.
"""

from .clinic_api import ClinicApiClient, get_clinic_api_client
from .directory import DoctorDirectory, PatientDirectory
from .history import VisitHistoryAnalyzer
from .pricing import resolve_draft_price, resolve_price
from .schedule import ScheduleStateRepository
from .slots import generate_slots

__all__ = [
    "ClinicApiClient",
    "DoctorDirectory",
    "PatientDirectory",
    "ScheduleStateRepository",
    "VisitHistoryAnalyzer",
    "generate_slots",
    "get_clinic_api_client",
    "resolve_draft_price",
    "resolve_price",
]
