"""
userapp-flasher - over-the-air installer for BLE user-app firmware

Validates an ELF image against the device flash layout, encodes it into
the user-app programming protocol, and delivers it over Bluetooth LE or
as a standalone bleak script.
"""

__version__ = "0.1.0"

from userapp_flasher.models import DeviceProfile, MemoryRegion, get_profile
from userapp_flasher.protocol import DeviceFilter, DeviceUploader

__all__ = [
    "DeviceProfile",
    "MemoryRegion",
    "get_profile",
    "DeviceFilter",
    "DeviceUploader",
    "__version__",
]
