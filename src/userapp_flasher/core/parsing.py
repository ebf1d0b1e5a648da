"""
Centralized parsing helpers for addresses, lengths and device selectors.

The CLI wraps these and converts ValueError into typer.BadParameter.
"""

import re
from typing import Optional

_MAC_DELIMITED = re.compile(r"^[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$")
_MAC_COMPACT = re.compile(r"^[0-9A-Fa-f]{12}$")
_UUID = re.compile(r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$")


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Parse an address or length value.

    Accepts:
        - Decimal: "2048"
        - Hex with 0x prefix: "0x800" or "0X800"
        - Hex with h suffix: "800h" or "800H"
        - None or blank for "not given"

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            result = int(value, 16)
        elif value.lower().endswith("h"):
            result = int(value[:-1], 16)
        else:
            result = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid value '{value}'. Use decimal (2048), hex (0x800), or suffix (800h)."
        )
    if result < 0:
        raise ValueError(f"Invalid value '{value}': must not be negative.")
    return result


def parse_address(value: Optional[str]) -> Optional[str]:
    """
    Parse a BLE device address.

    Accepts MAC addresses delimited by ':' or '-' or written as 12 hex
    digits, and the 128-bit UUIDs macOS uses in place of MACs.

    Returns:
        Upper-case colon separated MAC, upper-case UUID, or None.

    Raises:
        ValueError: If value is not a recognizable address.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    if _MAC_DELIMITED.match(value) or _MAC_COMPACT.match(value):
        compact = value.replace(":", "").replace("-", "")
        return ":".join(compact[i:i + 2] for i in range(0, 12, 2)).upper()
    if _UUID.match(value):
        return value.upper()
    raise ValueError(
        f"Invalid device address '{value}'. Use AA:BB:CC:DD:EE:FF (or a macOS device UUID)."
    )


def parse_mode(value: str) -> bool:
    """
    Parse a script mode into the commit flag.

    "commit" (or "install") persists the app; "run" only runs it.

    Raises:
        ValueError: If mode is not recognized.
    """
    mode = value.strip().lower()
    if mode in ("commit", "install"):
        return True
    if mode == "run":
        return False
    raise ValueError(f"Invalid mode '{value}', expected \"run\" or \"commit\"")
