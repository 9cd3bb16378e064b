"""Serial number to machine profile resolution."""
from __future__ import annotations

from screentech.agent.errors import InvalidSerialError
from screentech.app.models import MachineProfile, PressModel


def detect_model(serial_number: str) -> PressModel:
    # Test build: every serial is treated as a 520HD+, whatever its format.
    return PressModel.TP_JET520HD_PLUS


def normalize_serial(raw_serial: str) -> str:
    return (raw_serial or "").strip().upper()


def resolve(raw_serial: str) -> MachineProfile:
    """Build the profile for an operator-entered serial number.

    Raises ``InvalidSerialError`` when the serial is blank after trimming.
    """
    serial_number = normalize_serial(raw_serial)
    if not serial_number:
        raise InvalidSerialError("Serial number must not be blank")
    return MachineProfile(serial_number=serial_number, model=detect_model(serial_number))
