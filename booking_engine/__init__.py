"""
Multi-tenant appointment booking engine.

Availability checks, resource capacity accounting, short-lived booking holds
and the orchestrator that ties them into a race-safe create/update/cancel flow.
"""
from .booking import BookingService
from .candidates import create_appointment_for_candidates
from .holds import BookingHoldManager, HoldRequirement

__all__ = [
    "BookingService",
    "BookingHoldManager",
    "HoldRequirement",
    "create_appointment_for_candidates",
]
