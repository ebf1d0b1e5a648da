"""
Core workflow actions for userapp-flasher.

This module exposes the functions the CLI calls. Every path that talks to
a device validates the image first; layout errors end the operation before
any Bluetooth activity.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from userapp_flasher.core.encoder import generate
from userapp_flasher.core.layout import validate_layout
from userapp_flasher.core.results import OperationResult
from userapp_flasher.elf_reader import FirmwareImage, load_elf
from userapp_flasher.errors import (
    EncodingError,
    FirmwareFileError,
    LayoutError,
    SinkError,
    TransportError,
)
from userapp_flasher.models import DeviceProfile
from userapp_flasher.protocol.ble_transport import DeviceFilter, DeviceUploader
from userapp_flasher.protocol.sinks import (
    DEFAULT_BLE_MTU,
    DEFAULT_SCRIPT_MTU,
    BleakScriptSink,
    BleWriteSink,
    parse_instruction,
)

logger = logging.getLogger(__name__)

FIRMWARE_SUFFIXES = (".elf",)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "userapp_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _operation_name(commit: bool) -> str:
    return "install" if commit else "run"


def load_firmware(path: str) -> FirmwareImage:
    """
    Load a firmware image, accepting only .elf files.

    Raises:
        FirmwareFileError: If the file is missing, not .elf, or malformed
    """
    file_path = Path(path)
    if file_path.suffix.lower() not in FIRMWARE_SUFFIXES:
        raise FirmwareFileError(f"Invalid file extension (must be .elf): {path}")
    if not file_path.exists():
        raise FirmwareFileError(f"Firmware file not found: {path}")
    return load_elf(file_path)


def prepare_writes(
    input_path: str,
    profile: DeviceProfile,
    commit: bool = True,
    mtu: int = DEFAULT_BLE_MTU,
) -> Tuple[FirmwareImage, List[bytes]]:
    """
    Load, validate and encode a firmware file for direct BLE delivery.

    Returns:
        Tuple of (image, rendered_instructions)

    Raises:
        FirmwareFileError, LayoutError, EncodingError, SinkError
    """
    image = load_firmware(input_path)
    validate_layout(image, profile)
    writes = generate(image, profile, BleWriteSink(mtu=mtu), commit=commit)
    return image, writes


def inspect_firmware(input_path: str, profile: DeviceProfile) -> OperationResult:
    """
    Report the sections of a firmware file and whether it fits ``profile``.

    Returns:
        OperationResult; metadata["sections"] maps name -> (address, size)
    """
    try:
        image = load_firmware(input_path)
    except FirmwareFileError as e:
        return OperationResult.failure("inspect", str(e), profile=profile.name)

    result = OperationResult.success(
        "inspect",
        profile=profile.name,
        bytes_len=profile.total_length,
        metadata={"sections": {s.name: (s.address, s.size) for s in image}},
    )
    try:
        validate_layout(image, profile)
    except LayoutError as e:
        result.add_error(str(e))
    return result


def write_script(
    input_path: str,
    output_path: str,
    profile: DeviceProfile,
    commit: bool = True,
    mtu: int = DEFAULT_SCRIPT_MTU,
) -> OperationResult:
    """
    Generate a bleak replay script for a firmware file.

    The output file is only created once the image has passed validation.
    """
    operation = "script"
    with _capture_logs() as logs:
        try:
            image = load_firmware(input_path)
            validate_layout(image, profile)
            with open(output_path, "wb") as out:
                count = generate(image, profile, BleakScriptSink(out, mtu=mtu), commit=commit)
        except (FirmwareFileError, LayoutError, EncodingError, SinkError) as e:
            return OperationResult.failure(operation, str(e), profile=profile.name, logs=list(logs))
        except OSError as e:
            return OperationResult.failure(
                operation, f"Cannot write {output_path}: {e}", profile=profile.name, logs=list(logs)
            )

        logger.info(f"Wrote {count} commands to {output_path}")
        return OperationResult.success(
            operation,
            profile=profile.name,
            bytes_len=profile.total_length,
            writes=count,
            metadata={"output": str(output_path), "mode": _operation_name(commit)},
            logs=list(logs),
        )


def upload_firmware(
    input_path: str,
    device_filter: DeviceFilter,
    profile: DeviceProfile,
    commit: bool = True,
    dry_run: bool = False,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    uploader: Optional[DeviceUploader] = None,
    adapters: Optional[List[Optional[str]]] = None,
) -> OperationResult:
    """
    Complete upload workflow: load -> validate -> encode -> deliver.

    Args:
        input_path: Path to the .elf firmware
        device_filter: Name and/or address of the target device
        profile: Device flash geometry
        commit: Persist the app (install) or only run it
        dry_run: Stop after encoding, no Bluetooth activity
        progress_cb: Optional callback(done_writes, total_writes)
        uploader: Preconfigured uploader (defaults to a bleak-backed one)
        adapters: Restrict the search to these adapters

    Returns:
        OperationResult. When no device matched, ``ok`` is False and
        metadata["not_found"] is True.
    """
    operation = _operation_name(commit)

    with _capture_logs() as logs:
        try:
            _image, writes = prepare_writes(input_path, profile, commit=commit)
        except (FirmwareFileError, LayoutError, EncodingError, SinkError) as e:
            return OperationResult.failure(operation, str(e), profile=profile.name, logs=list(logs))

        checksum = parse_instruction(writes[-1]).checksum
        result = OperationResult.success(
            operation,
            profile=profile.name,
            bytes_len=profile.total_length,
            checksum=checksum,
            writes=len(writes),
            metadata={"filter": device_filter.describe(), "dry_run": dry_run},
        )

        if dry_run:
            logger.info(f"Dry run: {len(writes)} instructions ready, nothing sent")
            result.logs = list(logs)
            return result

        if uploader is None:
            uploader = DeviceUploader(device_filter, progress_cb=progress_cb)
        elif progress_cb is not None:
            uploader.progress_cb = progress_cb

        logger.info(f"Scanning for target device ({device_filter.describe()})")
        try:
            report = asyncio.run(uploader.upload(writes, adapters=adapters))
        except TransportError as e:
            result.add_error(str(e))
            result.logs = list(logs)
            return result

        for warning in report.warnings:
            result.add_warning(warning)
        result.metadata["candidates_tried"] = report.candidates_tried
        result.metadata["adapters_scanned"] = report.adapters_scanned

        if report.succeeded and report.device is not None:
            result.device = report.device.label
            logger.info(f"Upload to {report.device.label} complete")
        else:
            result.metadata["not_found"] = True
            result.add_error(
                f"No matching or reachable device found ({device_filter.describe()})"
            )
        result.logs = list(logs)
        return result
