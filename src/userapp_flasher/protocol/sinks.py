"""
Output sinks for the user-app command stream.

Two renderings of the same instruction format:

    Start   -> 02
    Write   -> 03 | offset_lo | offset_hi | data...
    Commit  -> 04 | crc_lo | crc_hi
    Run     -> 05 | crc_lo | crc_hi

BleWriteSink collects the instructions for direct GATT writes.
BleakScriptSink emits a standalone Python script that replays them with
bleak, for hosts where this tool is not installed.
"""

import logging
from typing import BinaryIO, List

from userapp_flasher.core.encoder import Command, Commit, Run, Start, Write
from userapp_flasher.errors import SinkError

logger = logging.getLogger(__name__)

OP_START = 0x02
OP_WRITE = 0x03
OP_COMMIT = 0x04
OP_RUN = 0x05

# Largest GATT write the device accepts (negotiated ATT payload)
BLE_WRITE_LIMIT = 124
DEFAULT_BLE_MTU = 120
DEFAULT_SCRIPT_MTU = 120

UUID_BASE = "a277{}-e035-13ae-4647-0e0437dd272a"


def gen_uuid(role: str) -> str:
    """Expand a 4-hex-digit characteristic role into the full 128-bit UUID."""
    return UUID_BASE.format(role)


APP_SERVICE_UUID = gen_uuid("3100")
PROG_CHAR_UUID = gen_uuid("3101")
STATUS_CHAR_UUID = gen_uuid("3040")
APP_INFO_CHAR_UUID = gen_uuid("3102")
APP_NAME_CHAR_UUID = gen_uuid("3103")
APP_PROVIDER_CHAR_UUID = gen_uuid("3104")


def _u16_le(value: int, what: str) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise SinkError(f"{what} 0x{value:X} does not fit in 16 bits")
    return value.to_bytes(2, "little")


def render_command(cmd: Command) -> bytes:
    """Render one command into its wire instruction."""
    if isinstance(cmd, Start):
        return bytes([OP_START])
    if isinstance(cmd, Write):
        return bytes([OP_WRITE]) + _u16_le(cmd.offset, "Write offset") + bytes(cmd.data)
    if isinstance(cmd, Commit):
        return bytes([OP_COMMIT]) + _u16_le(cmd.checksum, "Checksum")
    if isinstance(cmd, Run):
        return bytes([OP_RUN]) + _u16_le(cmd.checksum, "Checksum")
    raise SinkError(f"Unknown command {cmd!r}")


def parse_instruction(packet: bytes) -> Command:
    """Inverse of render_command(), used to check generated output."""
    if not packet:
        raise ValueError("empty instruction")
    op = packet[0]
    if op == OP_START and len(packet) == 1:
        return Start()
    if op == OP_WRITE and len(packet) >= 3:
        return Write(offset=int.from_bytes(packet[1:3], "little"), data=bytes(packet[3:]))
    if op in (OP_COMMIT, OP_RUN) and len(packet) == 3:
        checksum = int.from_bytes(packet[1:3], "little")
        return Commit(checksum) if op == OP_COMMIT else Run(checksum)
    raise ValueError(f"malformed instruction: {bytes(packet).hex()}")


class BleWriteSink:
    """
    Collects rendered instructions for direct delivery over BLE.

    Example:
        sink = BleWriteSink()
        writes = generate(image, profile, sink)
        # writes: List[bytes], one GATT write each
    """

    def __init__(self, mtu: int = DEFAULT_BLE_MTU):
        if mtu > BLE_WRITE_LIMIT:
            raise ValueError(f"MTU {mtu} exceeds BLE write limit of {BLE_WRITE_LIMIT} bytes")
        self._mtu = mtu
        self.writes: List[bytes] = []
        self._finished = False

    @property
    def mtu(self) -> int:
        return self._mtu

    def write_command(self, cmd: Command) -> None:
        if self._finished:
            raise SinkError("Sink already finished")
        packet = render_command(cmd)
        if len(packet) > self._mtu:
            raise SinkError(f"Instruction of {len(packet)} bytes exceeds MTU {self._mtu}")
        logger.debug(f"+++ {packet.hex().upper()}")
        self.writes.append(packet)

    def finish(self) -> List[bytes]:
        self._finished = True
        return self.writes


SCRIPT_PRELUDE = '''
import asyncio
from bleak import BleakClient
import sys
import os

def gen_uuid(uuid):
    return f"a277{uuid}-e035-13ae-4647-0e0437dd272a"

ADDRESS = sys.argv[1]

STATUS_UUID = gen_uuid("3040")
PROG_UUID = gen_uuid("3101")
APP_INFO_UUID = gen_uuid("3102")
APP_NAME_UUID = gen_uuid("3103")
APP_PROVIDER_UUID = gen_uuid("3104")

PROGRAM = [
'''

SCRIPT_CONCLUSION = '''
]

async def main():
    def notify_callback(sender, data: bytearray):
        print(f"{sender}: {data}")

    print("Scanning for", ADDRESS)
    async with BleakClient(ADDRESS) as client:
        print("Connected. Enabling notifications...")
        await client.start_notify(STATUS_UUID, notify_callback)
        await client.start_notify(APP_NAME_UUID, notify_callback)
        await client.start_notify(APP_PROVIDER_UUID, notify_callback)
        await client.start_notify(APP_INFO_UUID, notify_callback)
        await asyncio.sleep(0.5)
        print("Requesting app info...")
        await client.write_gatt_char(PROG_UUID, b"\\x00", response=True)
        await asyncio.sleep(1.0)
        print("Beginning installation...")
        for i, packet in enumerate(PROGRAM):
            print(f"{(i + 1) / len(PROGRAM) * 100:.1f}%")
            await client.write_gatt_char(PROG_UUID, bytearray(packet), response=True)
        await asyncio.sleep(1.0)

asyncio.run(main())
'''


class BleakScriptSink:
    """
    Writes a replay script for the command stream to a binary stream.

    The prelude is written with the first command; the conclusion on
    finish(). The generated script takes the device address as its only
    argument.
    """

    def __init__(self, out: BinaryIO, mtu: int = DEFAULT_SCRIPT_MTU):
        self.out = out
        self._mtu = mtu
        self._prelude_written = False
        self._finished = False
        self.count = 0

    @property
    def mtu(self) -> int:
        return self._mtu

    def _emit(self, text: str) -> None:
        try:
            self.out.write(text.encode("utf-8"))
        except OSError as e:
            raise SinkError(f"Failed writing script output: {e}")

    def write_command(self, cmd: Command) -> None:
        if self._finished:
            raise SinkError("Sink already finished")
        if not self._prelude_written:
            self._prelude_written = True
            self._emit(SCRIPT_PRELUDE)

        packet = render_command(cmd)
        if len(packet) == 1:
            line = f"  [{packet[0]}],\n"
        else:
            fields = ", ".join(f"0x{b:02x}" for b in packet[1:])
            line = f"  [{packet[0]}, {fields}],\n"
        self._emit(line)
        self.count += 1

    def finish(self) -> int:
        """Flush the conclusion; returns the number of command entries."""
        if self._finished:
            raise SinkError("Sink already finished")
        if not self._prelude_written:
            self._prelude_written = True
            self._emit(SCRIPT_PRELUDE)
        self._emit(SCRIPT_CONCLUSION)
        self._finished = True
        try:
            self.out.flush()
        except OSError as e:
            raise SinkError(f"Failed flushing script output: {e}")
        return self.count
