"""Device identifier (hardware address) validation."""

from __future__ import annotations

import re

from plugctl.core.errors import DeviceIdError

_SEPARATED_RE = re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(?:\1[0-9a-f]{2}){4}$")
_BARE_RE = re.compile(r"^[0-9a-f]{12}$")


def normalize_device_id(identifier: str) -> str:
    """Return ``identifier`` as a lowercase colon-separated hardware address.

    Accepts colon, dash and bare-hex notations of a 48-bit address.
    """
    candidate = identifier.strip().lower()
    if _SEPARATED_RE.match(candidate):
        octets = re.split(r"[:-]", candidate)
    elif _BARE_RE.match(candidate):
        octets = [candidate[i : i + 2] for i in range(0, 12, 2)]
    else:
        raise DeviceIdError(f"'{identifier}' is not a hardware address (expected e.g. ac:cf:23:12:34:56)")
    return ":".join(octets)
