"""
ELF section reader.

Only what the flasher needs: section names, load addresses, sizes and the
raw bytes of PROGBITS sections, read through pyelftools. NOBITS sections
(``.bss``) report their size with empty content.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from userapp_flasher.errors import FirmwareFileError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Section:
    """Read-only view of a single ELF section."""

    name: str
    address: int
    size: int
    data: bytes = b""

    @property
    def end(self) -> int:
        """Return end address (exclusive)."""
        return self.address + self.size


@dataclass
class FirmwareImage:
    """Named sections loaded from a firmware file."""

    sections: List[Section] = field(default_factory=list)
    source: Optional[str] = None

    def section(self, name: str) -> Optional[Section]:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    def __len__(self) -> int:
        return len(self.sections)


def _read_section(elf_section) -> Section:
    name = elf_section.name
    address = elf_section["sh_addr"]
    size = elf_section["sh_size"]
    if elf_section["sh_type"] == "SHT_NOBITS":
        return Section(name=name, address=address, size=size)

    data = elf_section.data()
    if len(data) < size:
        raise FirmwareFileError(f"Section '{name}' extends past end of file")
    return Section(name=name, address=address, size=size, data=bytes(data))


def parse_elf(blob: bytes, source: Optional[str] = None) -> FirmwareImage:
    """
    Parse the section table out of an ELF blob.

    Args:
        blob: Complete file contents
        source: Optional path, kept for messages

    Returns:
        FirmwareImage with every non-null section

    Raises:
        FirmwareFileError: If the blob is not a well-formed ELF file
    """
    try:
        elf = ELFFile(io.BytesIO(blob))
        sections = [
            _read_section(s) for s in elf.iter_sections() if s["sh_type"] != "SHT_NULL"
        ]
    except ELFError as e:
        raise FirmwareFileError(f"Not a valid ELF file: {e}")

    logger.debug(f"Parsed {len(sections)} sections from {source or 'ELF blob'}")
    return FirmwareImage(sections=sections, source=source)


def load_elf(path: str | Path) -> FirmwareImage:
    """Read and parse an ELF file from disk."""
    path = Path(path)
    try:
        blob = path.read_bytes()
    except OSError as e:
        raise FirmwareFileError(f"Cannot read {path}: {e}")
    return parse_elf(blob, source=str(path))
