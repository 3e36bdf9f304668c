import pytest

from plugctl.core.device_id import normalize_device_id
from plugctl.core.errors import DeviceIdError


@pytest.mark.parametrize(
    "identifier",
    ["AC:CF:23:12:34:56", "ac-cf-23-12-34-56", "ACCF23123456", "  ac:cf:23:12:34:56\n"],
)
def test_accepted_notations_normalize(identifier: str) -> None:
    assert normalize_device_id(identifier) == "ac:cf:23:12:34:56"


@pytest.mark.parametrize(
    "identifier",
    ["", "ac:cf:23:12:34", "ac:cf-23:12:34:56", "zz:cf:23:12:34:56", "accf2312345", "192.168.1.50"],
)
def test_rejected_identifiers(identifier: str) -> None:
    with pytest.raises(DeviceIdError):
        normalize_device_id(identifier)
