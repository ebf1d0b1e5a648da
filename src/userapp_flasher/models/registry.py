"""
Device profile registry for user-app targets.

Provides a single source of truth for the flash geometry of each supported
hardware revision: where the user-app ``.text`` and ``.data`` regions live
and how large they are.

Usage:
    from userapp_flasher.models import get_profile, profile_with_overrides

    profile = get_profile("ledx")
    profile = profile_with_overrides(profile, text_len=0x1000)
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional

DEFAULT_PROFILE = "ledx"


@dataclass(frozen=True)
class MemoryRegion:
    """Definition of a flash region on the target."""
    addr: int
    length: int

    @property
    def end(self) -> int:
        """Return end address (exclusive)."""
        return self.addr + self.length

    def describe(self) -> str:
        return f"0x{self.addr:08X}-0x{self.end:08X} ({self.length} bytes)"


@dataclass(frozen=True)
class DeviceProfile:
    """
    Flash geometry for one target hardware revision.

    The device buffers the user app as ``data`` followed by ``text``; write
    offsets and the checksum are relative to ``data.addr``.
    """
    name: str
    text: MemoryRegion
    data: MemoryRegion
    description: str = ""

    @property
    def total_length(self) -> int:
        """Size of the combined data+text offset space."""
        return self.data.length + self.text.length

    @property
    def text_offset(self) -> int:
        """Offset of the first .text byte in the combined space."""
        return self.text.addr - self.data.addr


PROFILES: Dict[str, DeviceProfile] = {
    "ledx": DeviceProfile(
        name="ledx",
        text=MemoryRegion(addr=0x2003F800, length=0x800),
        data=MemoryRegion(addr=0x2003F000, length=0x800),
        description="Ledx controller, 2 KiB data + 2 KiB text user-app slot",
    ),
}


def list_profiles() -> List[str]:
    """Return all known profile names, sorted."""
    return sorted(PROFILES.keys())


def get_profile(name: str = DEFAULT_PROFILE) -> DeviceProfile:
    """
    Look up a device profile by name (case-insensitive).

    Raises:
        KeyError: If the profile is unknown
    """
    key = name.strip().lower()
    if key not in PROFILES:
        raise KeyError(
            f"Unknown device profile '{name}'. Known profiles: {', '.join(list_profiles())}"
        )
    return PROFILES[key]


def profile_with_overrides(
    profile: DeviceProfile,
    text_addr: Optional[int] = None,
    text_len: Optional[int] = None,
    data_addr: Optional[int] = None,
    data_len: Optional[int] = None,
) -> DeviceProfile:
    """Return a copy of ``profile`` with any provided region values replaced."""
    if all(v is None for v in (text_addr, text_len, data_addr, data_len)):
        return profile

    text = MemoryRegion(
        addr=profile.text.addr if text_addr is None else text_addr,
        length=profile.text.length if text_len is None else text_len,
    )
    data = MemoryRegion(
        addr=profile.data.addr if data_addr is None else data_addr,
        length=profile.data.length if data_len is None else data_len,
    )
    for label, value in (("text length", text.length), ("data length", data.length)):
        if value < 0:
            raise ValueError(f"{label} must be >= 0")
    return replace(profile, name=f"{profile.name} (custom)", text=text, data=data)
