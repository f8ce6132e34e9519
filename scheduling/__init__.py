"""
Clinic appointment scheduling core.

Slot generation, schedule reconciliation, visit history analysis,
pricing and the booking wizard.
"""

__version__ = "1.0.0"
