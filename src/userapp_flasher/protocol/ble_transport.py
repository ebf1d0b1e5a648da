"""
BLE transport and device uploader.

Handles discovery and delivery of a rendered user-app command stream:
- Adapter enumeration
- Timed, unfiltered scanning on each adapter
- Candidate filtering by advertised name and/or address
- Connection, GATT resolution of the programming characteristic
- Sequential acknowledged writes with progress reporting

Candidates are tried strictly one at a time. A failure on one peripheral
is logged and the search moves on; only adapter/scan failures abort the
run.
"""

import asyncio
import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from userapp_flasher.errors import TransportError
from userapp_flasher.protocol.sinks import APP_SERVICE_UUID, PROG_CHAR_UUID

logger = logging.getLogger(__name__)

SCAN_SECONDS = 10.0
SETTLE_SECONDS = 2.0
CONNECT_TIMEOUT = 20.0
SYSFS_BLUETOOTH = Path("/sys/class/bluetooth")

# CoreBluetooth advertisement key
CB_ADV_CONNECTABLE = "kCBAdvDataIsConnectable"

# Failures that only disqualify the current peripheral
PERIPHERAL_ERRORS = (BleakError, asyncio.TimeoutError, OSError)

ProgressCallback = Callable[[int, int], None]

_HEX_ADDR = re.compile(r"^[0-9A-Fa-f]{12}$")


def normalize_address(address: str) -> str:
    """
    Canonical form of a device address for comparisons.

    MAC addresses become upper-case colon separated (``AA:BB:CC:DD:EE:FF``)
    whatever the input delimiter. Anything else (e.g. the CoreBluetooth
    UUIDs bleak reports on macOS) is upper-cased unchanged.
    """
    value = address.strip()
    compact = value.replace(":", "").replace("-", "")
    if _HEX_ADDR.match(compact) and len(value) in (12, 17):
        return ":".join(compact[i:i + 2] for i in range(0, 12, 2)).upper()
    return value.upper()


class UploadState(Enum):
    """Uploader state machine states."""
    IDLE = "idle"
    SCANNING = "scanning"
    FILTERING = "filtering"
    CONNECTING = "connecting"
    SERVICE_DISCOVERY = "service_discovery"
    UPLOADING = "uploading"
    DISCONNECTING = "disconnecting"
    SUCCEEDED = "succeeded"
    NEXT_CANDIDATE = "next_candidate"


@dataclass
class GattCharacteristicInfo:
    uuid: str
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass
class GattServiceInfo:
    uuid: str
    characteristics: List[GattCharacteristicInfo] = field(default_factory=list)

    def characteristic(self, uuid: str) -> Optional[GattCharacteristicInfo]:
        uuid = uuid.lower()
        for char in self.characteristics:
            if char.uuid == uuid:
                return char
        return None


@dataclass
class PeripheralInfo:
    """
    A discovered peripheral.

    ``connectable`` is None when the backend does not report it.
    ``services`` is filled in after connecting and cleared on disconnect.
    """
    address: str
    name: Optional[str] = None
    connectable: Optional[bool] = None
    connected: bool = False
    rssi: Optional[int] = None
    manufacturer_data: Dict[int, bytes] = field(default_factory=dict)
    services: List[GattServiceInfo] = field(default_factory=list)
    device: Any = field(default=None, repr=False, compare=False)

    def service(self, uuid: str) -> Optional[GattServiceInfo]:
        uuid = uuid.lower()
        for svc in self.services:
            if svc.uuid == uuid:
                return svc
        return None

    @property
    def label(self) -> str:
        return f"{self.name or '(unnamed)'} ({self.address})"


@dataclass(frozen=True)
class DeviceFilter:
    """
    Candidate selector.

    An absent field matches anything; present fields must all match.
    At least one field is required.
    """
    name: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name and not self.address:
            raise ValueError("A device name or address is required")

    def matches(self, name: Optional[str], address: str) -> bool:
        name_matches = self.name is None or self.name == name
        address_matches = (
            self.address is None
            or normalize_address(self.address) == normalize_address(address)
        )
        return name_matches and address_matches

    def describe(self) -> str:
        parts = []
        if self.name:
            parts.append(f"name={self.name!r}")
        if self.address:
            parts.append(f"address={self.address}")
        return ", ".join(parts)


@dataclass
class UploadReport:
    """Outcome of a DeviceUploader run."""
    succeeded: bool = False
    device: Optional[PeripheralInfo] = None
    adapter: Optional[str] = None
    adapters_scanned: int = 0
    candidates_tried: int = 0
    writes_sent: int = 0
    warnings: List[str] = field(default_factory=list)


def list_adapters() -> List[Optional[str]]:
    """
    Enumerate Bluetooth adapters.

    On Linux the BlueZ adapters are read from sysfs (``hci0``, ``hci1``...).
    Other platforms expose a single system adapter, returned as ``None``.

    Raises:
        TransportError: If the adapter list cannot be read
    """
    if not sys.platform.startswith("linux"):
        return [None]
    if not SYSFS_BLUETOOTH.exists():
        return []
    try:
        names = [p.name for p in SYSFS_BLUETOOTH.iterdir() if re.match(r"^hci\d+$", p.name)]
    except OSError as e:
        raise TransportError(f"Cannot enumerate Bluetooth adapters: {e}")
    return sorted(names, key=lambda n: int(n[3:]))


def _link_state(device: Any, adv: Any) -> Tuple[Optional[bool], bool]:
    """
    Read (connectable, connected) from backend specific scan data.

    BlueZ carries the Device1 ``Connected`` property in ``device.details``.
    CoreBluetooth reports connectability in the advertisement dictionary
    inside ``adv.platform_data``. Anything else leaves connectable unknown.
    """
    connected = False
    details = device.details
    if isinstance(details, Mapping):
        connected = bool(details.get("props", {}).get("Connected", False))

    connectable = None
    for item in adv.platform_data or ():
        if isinstance(item, Mapping) and CB_ADV_CONNECTABLE in item:
            connectable = bool(item[CB_ADV_CONNECTABLE])
    return connectable, connected


def describe_services(services: Any) -> List[GattServiceInfo]:
    """Copy a bleak service collection into plain descriptors."""
    out: List[GattServiceInfo] = []
    for svc in services:
        out.append(
            GattServiceInfo(
                uuid=str(svc.uuid).lower(),
                characteristics=[
                    GattCharacteristicInfo(uuid=str(c.uuid).lower(), raw=c)
                    for c in svc.characteristics
                ],
            )
        )
    return out


class BleakCentral:
    """
    Thin wrapper over bleak's scanner and client.

    Example:
        central = BleakCentral()
        peripherals = await central.scan("hci0", 10.0)
        client = central.client_for(peripherals[0], "hci0")
    """

    def __init__(self, connect_timeout: float = CONNECT_TIMEOUT):
        self.connect_timeout = connect_timeout

    def adapters(self) -> List[Optional[str]]:
        return list_adapters()

    async def scan(self, adapter: Optional[str], duration: float) -> List[PeripheralInfo]:
        """
        Scan without filters for ``duration`` seconds.

        Raises:
            TransportError: If scanning cannot be started on the adapter
        """
        kwargs = {"adapter": adapter} if adapter else {}
        scanner = BleakScanner(**kwargs)
        try:
            await scanner.start()
            await asyncio.sleep(duration)
            await scanner.stop()
        except (BleakError, OSError) as e:
            raise TransportError(f"Can't scan on adapter {adapter or 'default'}: {e}")

        found = []
        for device, adv in scanner.discovered_devices_and_advertisement_data.values():
            connectable, connected = _link_state(device, adv)
            found.append(
                PeripheralInfo(
                    address=device.address,
                    name=adv.local_name,
                    connectable=connectable,
                    connected=connected,
                    rssi=adv.rssi,
                    manufacturer_data=dict(adv.manufacturer_data),
                    device=device,
                )
            )
        return found

    def client_for(self, peripheral: PeripheralInfo, adapter: Optional[str]) -> BleakClient:
        kwargs = {"adapter": adapter} if adapter else {}
        target = peripheral.device if peripheral.device is not None else peripheral.address
        return BleakClient(target, timeout=self.connect_timeout, **kwargs)


class DeviceUploader:
    """
    Finds the target device and plays a rendered command stream into it.

    Example:
        uploader = DeviceUploader(DeviceFilter(name="Ledx"))
        report = await uploader.upload(writes)
        if not report.succeeded:
            ...  # no matching or reachable device
    """

    def __init__(
        self,
        device_filter: DeviceFilter,
        central: Optional[Any] = None,
        scan_seconds: float = SCAN_SECONDS,
        settle_seconds: float = SETTLE_SECONDS,
        progress_cb: Optional[ProgressCallback] = None,
        service_uuid: str = APP_SERVICE_UUID,
        char_uuid: str = PROG_CHAR_UUID,
    ):
        self.device_filter = device_filter
        self.central = central if central is not None else BleakCentral()
        self.scan_seconds = scan_seconds
        self.settle_seconds = settle_seconds
        self.progress_cb = progress_cb
        self.service_uuid = service_uuid.lower()
        self.char_uuid = char_uuid.lower()
        self.state = UploadState.IDLE
        self.history: List[UploadState] = [UploadState.IDLE]

    def _set_state(self, state: UploadState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"uploader -> {state.value}")

    async def upload(
        self,
        writes: Sequence[bytes],
        adapters: Optional[List[Optional[str]]] = None,
    ) -> UploadReport:
        """
        Deliver ``writes`` to the first matching, reachable peripheral.

        Args:
            writes: Rendered instructions, sent in order
            adapters: Adapters to search; defaults to every adapter found

        Returns:
            UploadReport; ``succeeded`` is False when nothing matched

        Raises:
            TransportError: If adapters cannot be enumerated or scanned
        """
        report = UploadReport()
        if adapters is None:
            adapters = self.central.adapters()
        if not adapters:
            logger.error("No Bluetooth adapters found")

        for adapter in adapters:
            report.adapters_scanned += 1
            if await self._search_adapter(adapter, writes, report):
                self._set_state(UploadState.SUCCEEDED)
                report.succeeded = True
                report.adapter = adapter
                return report

        self._set_state(UploadState.IDLE)
        return report

    async def _search_adapter(
        self,
        adapter: Optional[str],
        writes: Sequence[bytes],
        report: UploadReport,
    ) -> bool:
        self._set_state(UploadState.SCANNING)
        logger.info(f"Starting scan on {adapter or 'default adapter'}...")
        peripherals = await self.central.scan(adapter, self.scan_seconds)
        logger.debug(f"{len(peripherals)} peripherals seen on {adapter or 'default adapter'}")

        self._set_state(UploadState.FILTERING)
        for peripheral in peripherals:
            if not peripheral.name:
                continue
            if not self.device_filter.matches(peripheral.name, peripheral.address):
                continue

            report.candidates_tried += 1
            logger.info(f"Connecting to {peripheral.label}")
            try:
                sent = await self._try_peripheral(adapter, peripheral, writes)
            except PERIPHERAL_ERRORS as e:
                msg = f"Upload to {peripheral.label} failed: {str(e) or type(e).__name__}"
                logger.warning(msg)
                report.warnings.append(msg)
                sent = None

            if sent is not None:
                report.device = peripheral
                report.writes_sent = sent
                return True
            self._set_state(UploadState.NEXT_CANDIDATE)
        return False

    async def _try_peripheral(
        self,
        adapter: Optional[str],
        peripheral: PeripheralInfo,
        writes: Sequence[bytes],
    ) -> Optional[int]:
        """Returns the number of writes sent, or None if the device lacks the app service."""
        client = self.central.client_for(peripheral, adapter)
        try:
            self._set_state(UploadState.CONNECTING)
            await client.connect()
            peripheral.connected = True
            await asyncio.sleep(self.settle_seconds)

            # bleak runs GATT discovery inside connect(); the table is only read here
            self._set_state(UploadState.SERVICE_DISCOVERY)
            peripheral.services = describe_services(client.services)
            service = peripheral.service(self.service_uuid)
            if service is None:
                logger.warning(
                    f"Device {peripheral.label} was found, but the userapp service was not found."
                )
                return None
            char = service.characteristic(self.char_uuid)
            if char is None:
                logger.warning(
                    f"Device {peripheral.label} was found, but the userapp programming "
                    f"characteristic was not found."
                )
                return None

            self._set_state(UploadState.UPLOADING)
            total = len(writes)
            for i, data in enumerate(writes):
                target = char.raw if char.raw is not None else char.uuid
                await client.write_gatt_char(target, data, response=True)
                if self.progress_cb:
                    self.progress_cb(i + 1, total)
            logger.info(f"Uploaded {total} instructions to {peripheral.label}")
            return total
        finally:
            self._set_state(UploadState.DISCONNECTING)
            await self._disconnect(client, peripheral)

    async def _disconnect(self, client: Any, peripheral: PeripheralInfo) -> None:
        try:
            if client.is_connected:
                await client.disconnect()
        except PERIPHERAL_ERRORS as e:
            logger.warning(f"Disconnect from {peripheral.label} failed: {e}")
        finally:
            peripheral.connected = False
            peripheral.services = []


async def scan_peripherals(
    central: Optional[Any] = None,
    duration: float = SCAN_SECONDS,
) -> Dict[str, List[PeripheralInfo]]:
    """
    Scan every adapter and list what it sees, for operator inspection.

    Returns:
        {adapter label: [PeripheralInfo, ...]}
    """
    central = central if central is not None else BleakCentral()
    results: Dict[str, List[PeripheralInfo]] = {}
    for adapter in central.adapters():
        label = adapter or "default"
        logger.info(f"Starting scan on {label}...")
        results[label] = await central.scan(adapter, duration)
    return results
