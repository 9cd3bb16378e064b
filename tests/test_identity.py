import pytest

from screentech.agent.errors import InvalidSerialError
from screentech.agent.identity import detect_model, resolve
from screentech.app.models import PressModel


def test_resolve_normalizes_serial():
    profile = resolve("  j30452 ")
    assert profile.serial_number == "J30452"
    assert profile.model == PressModel.TP_JET520HD_PLUS
    assert profile.install_date is None


def test_every_serial_maps_to_the_supported_model():
    assert detect_model("ANYTHING") == detect_model("tp-hd-plus-learn-01") == PressModel.TP_JET520HD_PLUS


@pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
def test_blank_serial_is_rejected(raw):
    with pytest.raises(InvalidSerialError):
        resolve(raw)


def test_profile_is_immutable():
    profile = resolve("abc")
    with pytest.raises(Exception):
        profile.serial_number = "XYZ"
