"""BLE protocol layer - instruction sinks and device uploader."""

from .sinks import (
    BleWriteSink,
    BleakScriptSink,
    render_command,
    parse_instruction,
    gen_uuid,
    APP_SERVICE_UUID,
    PROG_CHAR_UUID,
    BLE_WRITE_LIMIT,
    DEFAULT_BLE_MTU,
    DEFAULT_SCRIPT_MTU,
)
from .ble_transport import (
    BleakCentral,
    DeviceFilter,
    DeviceUploader,
    PeripheralInfo,
    UploadReport,
    UploadState,
    list_adapters,
    normalize_address,
    scan_peripherals,
)

__all__ = [
    # Sinks
    "BleWriteSink",
    "BleakScriptSink",
    "render_command",
    "parse_instruction",
    "gen_uuid",
    "APP_SERVICE_UUID",
    "PROG_CHAR_UUID",
    "BLE_WRITE_LIMIT",
    "DEFAULT_BLE_MTU",
    "DEFAULT_SCRIPT_MTU",
    # Transport
    "BleakCentral",
    "DeviceFilter",
    "DeviceUploader",
    "PeripheralInfo",
    "UploadReport",
    "UploadState",
    "list_adapters",
    "normalize_address",
    "scan_peripherals",
]
