"""
Price resolution for bookings.

A booking's amount can come from a selected procedure, a price typed by
the operator, or the doctor's default consultation fee. The first of these
that is defined wins, in that fixed order.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from scheduling.models.booking import BookingDraft, parse_amount
from scheduling.models.doctor import Procedure


def resolve_price(
    selected_procedure: Optional[Procedure] = None,
    manual_price: Any = None,
    doctor_default_fee: Any = None,
) -> Optional[Decimal]:
    """
    Resolve the amount to attach to a booking.

    Args:
        selected_procedure: Procedure chosen from the doctor's catalog
        manual_price: Amount typed by the operator
        doctor_default_fee: The doctor's consultation fee

    Returns:
        The first defined amount, or None to book unpriced
    """
    if selected_procedure is not None:
        return parse_amount(selected_procedure.price)

    amount = parse_amount(manual_price)
    if amount is not None:
        return amount

    return parse_amount(doctor_default_fee)


def find_procedure(
    procedures: Iterable[Procedure], procedure_id: Optional[int]
) -> Optional[Procedure]:
    """Look up a procedure by id in a catalog."""
    if procedure_id is None:
        return None
    for procedure in procedures:
        if procedure.id == procedure_id:
            return procedure
    return None


def resolve_draft_price(
    draft: BookingDraft, procedures: Iterable[Procedure] = ()
) -> Optional[Decimal]:
    """
    Resolve the price of a draft against the loaded procedure catalog.

    A selected procedure missing from the catalog (for instance because the
    catalog lookup failed) does not contribute a price.
    """
    procedure = find_procedure(procedures, draft.selected_procedure_id)
    fee = draft.doctor.consultation_fee if draft.doctor else None
    return resolve_price(procedure, draft.manual_price, fee)
