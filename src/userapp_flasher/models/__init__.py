"""
Device profile registry.

Provides the flash geometry for each supported target.
"""

from .registry import (
    DEFAULT_PROFILE,
    PROFILES,
    MemoryRegion,
    DeviceProfile,
    list_profiles,
    get_profile,
    profile_with_overrides,
)

__all__ = [
    "DEFAULT_PROFILE",
    "PROFILES",
    "MemoryRegion",
    "DeviceProfile",
    "list_profiles",
    "get_profile",
    "profile_with_overrides",
]
