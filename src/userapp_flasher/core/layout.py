"""
Layout validation for user-app firmware images.

Checks that the image's sections sit exactly where the device profile
expects them and that ``.data`` carries the user-app magic value. This is
the gate in front of every encode or upload: nothing is sent to a device
for an image that fails here.
"""

import logging
from typing import Optional

from userapp_flasher.elf_reader import FirmwareImage, Section
from userapp_flasher.errors import (
    IncorrectSectionLocation,
    MissingMagicNumber,
    MissingSection,
    SectionTooLarge,
)
from userapp_flasher.models import DeviceProfile, MemoryRegion

logger = logging.getLogger(__name__)

APP_MAGIC = 0x00041198
MAGIC_LEN = 4


def _check_within(section: Section, region: MemoryRegion) -> None:
    if section.address < region.addr:
        raise IncorrectSectionLocation(section.name, region.addr, section.address)
    if section.end > region.end:
        raise SectionTooLarge(section.name, region.end)


def read_magic(data_section: Section) -> Optional[int]:
    """Return the little-endian word at the start of .data, or None if too short."""
    if len(data_section.data) < MAGIC_LEN:
        return None
    return int.from_bytes(data_section.data[:MAGIC_LEN], "little")


def validate_layout(image: FirmwareImage, profile: DeviceProfile) -> None:
    """
    Validate an image against a device profile.

    Checks run in a fixed order and stop at the first failure:
        1. .text exists and starts exactly at profile.text.addr
        2. .text fits in profile.text.length
        3. .bss, if present, lies within the data region
        4. .data exists
        5. .data lies within the data region
        6. .data starts with APP_MAGIC (little-endian)

    Raises:
        MissingSection, IncorrectSectionLocation, SectionTooLarge,
        MissingMagicNumber
    """
    text = image.section(".text")
    if text is None:
        raise MissingSection(".text")
    if text.address != profile.text.addr:
        raise IncorrectSectionLocation(".text", profile.text.addr, text.address)
    if text.size > profile.text.length:
        raise SectionTooLarge(".text", profile.text.end)

    bss = image.section(".bss")
    if bss is not None:
        _check_within(bss, profile.data)

    data = image.section(".data")
    if data is None:
        raise MissingSection(".data")
    _check_within(data, profile.data)

    magic = read_magic(data)
    if magic != APP_MAGIC:
        raise MissingMagicNumber(magic)

    logger.debug(
        f"Layout OK for {profile.name}: .data {data.size}B, .text {text.size}B"
        + (f", .bss {bss.size}B" if bss is not None else "")
    )
