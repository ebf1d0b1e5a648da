"""Build small ELF32 little-endian files for tests."""

import struct

SHT_PROGBITS = 1
SHT_STRTAB = 3
SHT_NOBITS = 8

APP_MAGIC_BYTES = (0x00041198).to_bytes(4, "little")


def build_elf(sections):
    """
    Build an ELF32 blob.

    Args:
        sections: list of (name, sh_type, address, data, size); size is
                  used for NOBITS sections, len(data) otherwise.
    """
    names = b"\x00"
    name_offsets = []
    for name, *_ in sections:
        name_offsets.append(len(names))
        names += name.encode("ascii") + b"\x00"
    strtab_name = len(names)
    names += b".shstrtab\x00"

    body = b""
    headers = [struct.pack("<IIIIIIIIII", 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)]
    for (name, sh_type, address, data, size), name_off in zip(sections, name_offsets):
        offset = 52 + len(body)
        if sh_type == SHT_NOBITS:
            sh_size = size
        else:
            sh_size = len(data)
            body += data
        headers.append(
            struct.pack("<IIIIIIIIII", name_off, sh_type, 0, address, offset, sh_size, 0, 0, 1, 0)
        )

    strtab_offset = 52 + len(body)
    body += names
    headers.append(
        struct.pack("<IIIIIIIIII", strtab_name, SHT_STRTAB, 0, 0, strtab_offset, len(names), 0, 0, 1, 0)
    )
    body += b"\x00" * (-len(body) % 4)

    shoff = 52 + len(body)
    shnum = len(headers)
    e_ident = b"\x7fELF" + bytes([1, 1, 1, 0]) + b"\x00" * 8
    header = e_ident + struct.pack(
        "<HHIIIIIHHHHHH", 2, 0x28, 1, 0, 0, shoff, 0x05000000, 52, 0, 0, 40, shnum, shnum - 1
    )
    return header + body + b"".join(headers)


def app_elf(
    data=APP_MAGIC_BYTES + b"\x01\x02\x03\x04",
    text=bytes(range(16)),
    data_addr=0x2003F000,
    text_addr=0x2003F800,
    bss_size=0,
):
    """ELF for the default Ledx profile with optional .bss."""
    sections = [
        (".text", SHT_PROGBITS, text_addr, text, len(text)),
        (".data", SHT_PROGBITS, data_addr, data, len(data)),
    ]
    if bss_size:
        sections.append((".bss", SHT_NOBITS, data_addr + len(data), b"", bss_size))
    return build_elf(sections)
