"""
Exception hierarchy for userapp-flasher.

Layout errors are raised before any wireless action. Transport errors are
only raised for failures that make the whole run impossible; per-device
failures are logged by the uploader and the search continues.
"""

from typing import Optional


class UserAppError(Exception):
    """Base exception for all userapp-flasher errors."""


class FirmwareFileError(UserAppError):
    """Input file is missing, has the wrong extension, or is not a usable ELF."""


class LayoutError(UserAppError):
    """Firmware image does not match the device memory layout."""


class MissingSection(LayoutError):
    """A required section is absent from the image."""

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Missing required section '{section}'")


class IncorrectSectionLocation(LayoutError):
    """A section starts at the wrong address."""

    def __init__(self, section: str, expected_addr: int, actual_addr: Optional[int] = None):
        self.section = section
        self.expected_addr = expected_addr
        self.actual_addr = actual_addr
        msg = f"Section '{section}' must be located at 0x{expected_addr:08X}"
        if actual_addr is not None:
            msg += f" (found at 0x{actual_addr:08X})"
        super().__init__(msg)


class SectionTooLarge(LayoutError):
    """A section extends past the end of its region."""

    def __init__(self, section: str, max_bound: int):
        self.section = section
        self.max_bound = max_bound
        super().__init__(f"Section '{section}' is too large (must end at or before 0x{max_bound:08X})")


class MissingMagicNumber(LayoutError):
    """The .data section does not start with the user-app magic value."""

    def __init__(self, found: Optional[int] = None):
        self.found = found
        msg = "Missing magic number at the start of '.data'"
        if found is not None:
            msg += f" (found 0x{found:08X})"
        super().__init__(msg)


class EncodingError(UserAppError):
    """Image cannot be linearized into write commands."""


class SinkError(UserAppError):
    """Rendering output could not be written."""


class TransportError(UserAppError):
    """Bluetooth adapter or scan failure that prevents any delivery."""
