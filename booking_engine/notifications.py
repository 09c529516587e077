"""
Appointment change notifications.

The booking service calls an injected notifier after a create, update or
cancel has been committed. Delivery is best-effort: a failing notifier is
logged and never fails the booking. Without a notifier, NullNotifier is used.
"""

import logging
import uuid
from enum import Enum
from typing import Protocol

from .models import Appointment

logger = logging.getLogger(__name__)


class AppointmentEvent(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELED = "canceled"


class AppointmentNotifier(Protocol):
    async def appointment_changed(
        self,
        event: AppointmentEvent,
        tenant_id: uuid.UUID,
        appointment: Appointment,
    ) -> None:
        ...


class NullNotifier:
    async def appointment_changed(self, event, tenant_id, appointment) -> None:
        return None


class LoggingNotifier:
    """Writes one log line per change; handy for local runs."""

    async def appointment_changed(self, event, tenant_id, appointment) -> None:
        logger.info(
            "appointment.%s tenant=%s appointment=%s staff=%s %s-%s",
            event.value,
            tenant_id,
            appointment.id,
            appointment.staff_id,
            appointment.start.isoformat(),
            appointment.end.isoformat(),
        )


async def notify_safely(
    notifier: AppointmentNotifier,
    event: AppointmentEvent,
    tenant_id: uuid.UUID,
    appointment: Appointment,
) -> None:
    try:
        await notifier.appointment_changed(event, tenant_id, appointment)
    except Exception as exc:
        logger.exception("Failed to emit appointment.%s for %s: %s", event.value, appointment.id, exc)
