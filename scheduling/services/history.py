"""
Patient Visit History Analyzer.

Fetches a patient's return-visit statistics and applies the clinic's
return policy to them.
"""

from typing import Optional, Protocol

from loguru import logger

from scheduling.config import MULTIPLE_RETURNS_ADVISORY
from scheduling.models.patient import PatientHistorySummary


class PatientHistorySource(Protocol):
    async def get_patient_history(
        self, patient_id: int, doctor_id: Optional[int] = None
    ) -> PatientHistorySummary: ...


class VisitHistoryAnalyzer:
    """
    Interprets return-visit statistics for the booking wizard.

    More than one return in the current month adds the mandatory
    approval advisory to the summary. The advisory never blocks booking.
    """

    def __init__(self, source: PatientHistorySource):
        self._source = source

    async def analyze(
        self, patient_id: int, doctor_id: Optional[int] = None
    ) -> PatientHistorySummary:
        """
        Fetch and interpret a patient's history.

        Args:
            patient_id: The patient being booked
            doctor_id: Optional doctor to scope the statistics to

        Returns:
            Summary carrying the approval advisory when required

        Raises:
            LookupFailure: If the history could not be fetched
        """
        summary = await self._source.get_patient_history(patient_id, doctor_id)
        summary = apply_return_policy(summary)
        if summary.requires_approval:
            logger.warning(
                f"Patient {patient_id} has {summary.returns_count_this_month} "
                f"returns this month (approval required)"
            )
        return summary


def apply_return_policy(summary: PatientHistorySummary) -> PatientHistorySummary:
    """Attach the multiple-returns advisory to a summary when it applies."""
    if not summary.requires_approval:
        return summary
    message = summary.message
    if not message:
        message = MULTIPLE_RETURNS_ADVISORY
    elif MULTIPLE_RETURNS_ADVISORY not in message:
        message = f"{MULTIPLE_RETURNS_ADVISORY} {message}"
    return summary.model_copy(update={"message": message})
