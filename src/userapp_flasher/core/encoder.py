"""
Command stream encoder.

Linearizes a validated firmware image into the user-app programming
protocol: one Start, ascending Write commands over the combined
data+text offset space, and a final Commit (or Run) carrying a CRC-16 of
the whole space.

Offset space (relative to the data region base):

    0                 text_offset                 data.length + text.length
    | .data | zeros.. | .text | zeros..........................|

Only .data and .text are written. Gaps, including .bss, are never sent:
the device write buffer is assumed to be zeroed before Start, so the gaps
are folded into the checksum as zero bytes. If a device revision stops
clearing its buffer the checksum check on the device will fail.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Protocol, Union

from userapp_flasher.elf_reader import FirmwareImage, Section
from userapp_flasher.errors import EncodingError
from userapp_flasher.models import DeviceProfile

logger = logging.getLogger(__name__)

# opcode + offset_lo + offset_hi
WRITE_HEADER_LEN = 3
MAX_OFFSET = 0xFFFF

CRC16_POLY = 0x1021
CRC16_INIT = 0xFFFF


@dataclass(frozen=True)
class Start:
    """Open a new programming transaction."""


@dataclass(frozen=True)
class Write:
    """Write ``data`` at ``offset`` in the combined data+text space."""
    offset: int
    data: bytes


@dataclass(frozen=True)
class Commit:
    """Verify the checksum and persist the app."""
    checksum: int


@dataclass(frozen=True)
class Run:
    """Verify the checksum and run the app without persisting it."""
    checksum: int


Command = Union[Start, Write, Commit, Run]


class CommandSink(Protocol):
    """
    Consumer of an ordered command stream.

    A sink is single-use: ``write_command`` is called once per command in
    order, then ``finish`` exactly once.
    """

    @property
    def mtu(self) -> int: ...

    def write_command(self, cmd: Command) -> None: ...

    def finish(self) -> Any: ...


def crc16_ccitt(dat: bytes, *, poly: int = CRC16_POLY, init: int = CRC16_INIT) -> int:
    """
    CRC16-CCITT, MSB-first (poly 0x1021).

    With the default init of 0xFFFF and no final XOR this is the
    "CCITT-FALSE" variant the device uses for its commit check.
    """
    crc = init & 0xFFFF
    for b in dat:
        crc ^= (b & 0xFF) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ poly) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


class Crc16:
    """Running CRC16-CCITT-FALSE accumulator."""

    def __init__(self, init: int = CRC16_INIT):
        self.value = init & 0xFFFF
        self.count = 0

    def update(self, data: bytes) -> None:
        self.value = crc16_ccitt(data, init=self.value)
        self.count += len(data)

    def update_zeros(self, count: int) -> None:
        """Fold ``count`` zero bytes, one at a time."""
        zero = b"\x00"
        for _ in range(count):
            self.update(zero)


class _StreamBuilder:
    """Tracks the running offset and checksum while commands are emitted."""

    def __init__(self, chunk_size: int):
        self.chunk_size = chunk_size
        self.offset = 0
        self.crc = Crc16()
        self.commands: List[Command] = [Start()]

    def write_section(self, section: Section) -> None:
        data = section.data
        for pos in range(0, len(data), self.chunk_size):
            chunk = data[pos:pos + self.chunk_size]
            if self.offset > MAX_OFFSET:
                raise EncodingError(
                    f"Offset 0x{self.offset:X} of '{section.name}' does not fit in 16 bits"
                )
            self.commands.append(Write(offset=self.offset, data=bytes(chunk)))
            self.crc.update(chunk)
            self.offset += len(chunk)

    def pad_to(self, target: int, what: str) -> None:
        if target < self.offset:
            raise EncodingError(
                f"{what} at offset 0x{target:X} overlaps previous data ending at 0x{self.offset:X}"
            )
        self.crc.update_zeros(target - self.offset)
        self.offset = target


def encode_commands(
    image: FirmwareImage,
    profile: DeviceProfile,
    mtu: int,
    commit: bool = True,
) -> List[Command]:
    """
    Build the full command sequence for an already validated image.

    Args:
        image: Image that passed validate_layout()
        profile: Device profile the image was validated against
        mtu: Maximum bytes per rendered instruction; Write payloads are
             at most mtu - 3 bytes
        commit: End with Commit (persist) when True, Run otherwise

    Returns:
        Start, Write..., Commit|Run

    Raises:
        EncodingError: If a section is missing, sections overlap in offset
            space, or offsets overflow 16 bits
    """
    chunk_size = mtu - WRITE_HEADER_LEN
    if chunk_size <= 0:
        raise EncodingError(f"MTU {mtu} leaves no room for write payload")

    data = image.section(".data")
    text = image.section(".text")
    if data is None or text is None:
        raise EncodingError("Image must contain .data and .text (validate it first)")

    builder = _StreamBuilder(chunk_size)
    builder.write_section(data)
    builder.pad_to(text.address - profile.data.addr, ".text")
    builder.write_section(text)
    builder.pad_to(profile.total_length, "End of app region")

    checksum = builder.crc.value
    builder.commands.append(Commit(checksum) if commit else Run(checksum))

    writes = len(builder.commands) - 2
    logger.info(
        f"Encoded {writes} writes over {builder.crc.count} bytes, "
        f"checksum 0x{checksum:04X} ({'commit' if commit else 'run'})"
    )
    return builder.commands


def generate(
    image: FirmwareImage,
    profile: DeviceProfile,
    sink: CommandSink,
    commit: bool = True,
) -> Any:
    """
    Encode an image and feed every command to ``sink`` in order.

    Returns:
        Whatever ``sink.finish()`` returns
    """
    for cmd in encode_commands(image, profile, sink.mtu, commit=commit):
        sink.write_command(cmd)
    return sink.finish()
