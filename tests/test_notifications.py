import logging
import uuid
from types import SimpleNamespace

from booking_engine.notifications import AppointmentEvent, LoggingNotifier, NullNotifier, notify_safely

from .conftest import at


def _appointment():
    return SimpleNamespace(id=uuid.uuid4(), staff_id=uuid.uuid4(), start=at(10), end=at(11))


async def test_logging_notifier_writes_one_line(caplog):
    appointment = _appointment()
    with caplog.at_level(logging.INFO, logger="booking_engine.notifications"):
        await LoggingNotifier().appointment_changed(AppointmentEvent.CREATED, uuid.uuid4(), appointment)
    assert "appointment.created" in caplog.text
    assert str(appointment.id) in caplog.text


async def test_null_notifier_does_nothing():
    assert await NullNotifier().appointment_changed(AppointmentEvent.UPDATED, uuid.uuid4(), _appointment()) is None


async def test_notify_safely_swallows_and_logs(caplog):
    class Broken:
        async def appointment_changed(self, event, tenant_id, appointment):
            raise ConnectionError("socket closed")

    with caplog.at_level(logging.ERROR, logger="booking_engine.notifications"):
        await notify_safely(Broken(), AppointmentEvent.CANCELED, uuid.uuid4(), _appointment())
    assert "Failed to emit appointment.canceled" in caplog.text
