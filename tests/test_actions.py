"""Tests for the core workflow actions (load, validate, encode, deliver)."""

import binascii

import pytest

from userapp_flasher.core.actions import (
    inspect_firmware,
    load_firmware,
    prepare_writes,
    upload_firmware,
    write_script,
)
from userapp_flasher.errors import FirmwareFileError, MissingMagicNumber
from userapp_flasher.models import get_profile
from userapp_flasher.protocol.ble_transport import DeviceFilter, DeviceUploader
from userapp_flasher.protocol.sinks import OP_COMMIT, OP_RUN, OP_START, OP_WRITE

from ble_fakes import FakeCentral, FakeClient, peripheral
from elf_builder import APP_MAGIC_BYTES, app_elf

PROFILE = get_profile("ledx")
ADDR = "AA:BB:CC:DD:EE:01"


@pytest.fixture
def elf_path(tmp_path):
    path = tmp_path / "app.elf"
    path.write_bytes(app_elf())
    return path


@pytest.fixture
def bad_magic_path(tmp_path):
    path = tmp_path / "nomagic.elf"
    path.write_bytes(app_elf(data=b"\x00\x00\x00\x00\x01\x02\x03\x04"))
    return path


def expected_checksum():
    buf = bytearray(PROFILE.total_length)
    data = APP_MAGIC_BYTES + b"\x01\x02\x03\x04"
    buf[0:len(data)] = data
    buf[0x800:0x810] = bytes(range(16))
    return binascii.crc_hqx(bytes(buf), 0xFFFF)


def fake_uploader(central, name="Ledx"):
    return DeviceUploader(
        DeviceFilter(name=name), central=central, scan_seconds=0, settle_seconds=0
    )


class TestLoadFirmware:
    def test_rejects_non_elf_extension(self, tmp_path):
        path = tmp_path / "app.bin"
        path.write_bytes(app_elf())
        with pytest.raises(FirmwareFileError, match="extension"):
            load_firmware(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FirmwareFileError, match="not found"):
            load_firmware(str(tmp_path / "missing.elf"))

    def test_loads_sections(self, elf_path):
        image = load_firmware(str(elf_path))
        assert image.section(".text").address == 0x2003F800
        assert image.section(".data").size == 8


class TestPrepareWrites:
    def test_commit_stream(self, elf_path):
        _image, writes = prepare_writes(str(elf_path), PROFILE)
        assert writes[0] == bytes([OP_START])
        assert writes[1] == bytes([OP_WRITE, 0x00, 0x00]) + APP_MAGIC_BYTES + b"\x01\x02\x03\x04"
        assert writes[2] == bytes([OP_WRITE, 0x00, 0x08]) + bytes(range(16))
        checksum = expected_checksum()
        assert writes[3] == bytes([OP_COMMIT, checksum & 0xFF, checksum >> 8])
        assert len(writes) == 4

    def test_run_stream_ends_with_run(self, elf_path):
        _image, writes = prepare_writes(str(elf_path), PROFILE, commit=False)
        assert writes[-1][0] == OP_RUN

    def test_layout_error_propagates(self, bad_magic_path):
        with pytest.raises(MissingMagicNumber):
            prepare_writes(str(bad_magic_path), PROFILE)


class TestUploadFirmware:
    def test_dry_run_never_touches_bluetooth(self, elf_path):
        central = FakeCentral({"hci0": [peripheral("Ledx", ADDR)]})
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            dry_run=True, uploader=fake_uploader(central),
        )
        assert result.ok
        assert result.operation == "install"
        assert result.writes == 4
        assert result.checksum == expected_checksum()
        assert central.scanned == []

    def test_upload_to_matching_device(self, elf_path):
        client = FakeClient()
        central = FakeCentral({"hci0": [peripheral("Ledx", ADDR)]}, clients={ADDR: client})
        progress = []
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            uploader=fake_uploader(central),
            progress_cb=lambda done, total: progress.append(done),
        )
        assert result.ok, result.errors
        assert result.device == f"Ledx ({ADDR})"
        assert len(client.writes) == 4
        assert progress == [1, 2, 3, 4]
        assert result.metadata["candidates_tried"] == 1
        assert any("complete" in line for line in result.logs)

    def test_run_mode_sends_run(self, elf_path):
        client = FakeClient()
        central = FakeCentral({"hci0": [peripheral("Ledx", ADDR)]}, clients={ADDR: client})
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            commit=False, uploader=fake_uploader(central),
        )
        assert result.ok
        assert result.operation == "run"
        assert client.writes[-1][1][0] == OP_RUN

    def test_not_found_is_reported(self, elf_path):
        central = FakeCentral({"hci0": [peripheral("Other", ADDR)]})
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            uploader=fake_uploader(central),
        )
        assert not result.ok
        assert result.metadata["not_found"] is True
        assert "No matching or reachable device" in result.errors[0]

    def test_scan_failure_is_an_error(self, elf_path):
        central = FakeCentral({"hci0": []}, scan_error="hci0")
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            uploader=fake_uploader(central),
        )
        assert not result.ok
        assert "not_found" not in result.metadata
        assert "hci0" in result.errors[0]

    def test_layout_failure_skips_scan(self, bad_magic_path):
        central = FakeCentral({"hci0": [peripheral("Ledx", ADDR)]})
        result = upload_firmware(
            str(bad_magic_path), DeviceFilter(name="Ledx"), PROFILE,
            uploader=fake_uploader(central),
        )
        assert not result.ok
        assert "magic" in result.errors[0].lower()
        assert central.scanned == []

    def test_restricting_adapters(self, elf_path):
        central = FakeCentral(
            {"hci0": [peripheral("Ledx", ADDR)], "hci1": [peripheral("Ledx", "AA:BB:CC:DD:EE:02")]}
        )
        result = upload_firmware(
            str(elf_path), DeviceFilter(name="Ledx"), PROFILE,
            uploader=fake_uploader(central), adapters=["hci1"],
        )
        assert result.ok
        assert central.scanned == [("hci1", 0)]


class TestWriteScript:
    def test_creates_script(self, elf_path, tmp_path):
        out = tmp_path / "upload.py"
        result = write_script(str(elf_path), str(out), PROFILE)
        assert result.ok, result.errors
        assert result.writes == 4
        assert result.metadata["mode"] == "install"
        text = out.read_text()
        assert "PROGRAM = [" in text
        assert "  [2],\n" in text
        compile(text, str(out), "exec")

    def test_no_output_on_layout_failure(self, bad_magic_path, tmp_path):
        out = tmp_path / "upload.py"
        result = write_script(str(bad_magic_path), str(out), PROFILE)
        assert not result.ok
        assert not out.exists()


class TestInspectFirmware:
    def test_reports_sections(self, elf_path):
        result = inspect_firmware(str(elf_path), PROFILE)
        assert result.ok
        assert result.metadata["sections"][".text"] == (0x2003F800, 16)
        assert result.metadata["sections"][".data"] == (0x2003F000, 8)

    def test_layout_problem_keeps_sections(self, bad_magic_path):
        result = inspect_firmware(str(bad_magic_path), PROFILE)
        assert not result.ok
        assert ".data" in result.metadata["sections"]

    def test_unreadable_file(self, tmp_path):
        result = inspect_firmware(str(tmp_path / "missing.elf"), PROFILE)
        assert not result.ok
