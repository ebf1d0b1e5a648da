"""
Core module for userapp-flasher.

This module provides the single source of truth for:
- Layout validation against a device profile (layout.py)
- Command stream encoding and checksum (encoder.py)
- Address/length/mode parsing (parsing.py)
- Result objects (results.py)
- Load/validate/encode/deliver workflows (actions.py, imported directly
  since it depends on the protocol layer)

The CLI calls into this module rather than implementing its own logic.
"""

from .layout import APP_MAGIC, validate_layout
from .encoder import (
    Command,
    CommandSink,
    Commit,
    Crc16,
    Run,
    Start,
    Write,
    crc16_ccitt,
    encode_commands,
    generate,
)
from .parsing import parse_int, parse_address, parse_mode
from .results import OperationResult

__all__ = [
    # Layout
    "APP_MAGIC",
    "validate_layout",
    # Encoder
    "Command",
    "CommandSink",
    "Commit",
    "Crc16",
    "Run",
    "Start",
    "Write",
    "crc16_ccitt",
    "encode_commands",
    "generate",
    # Parsing
    "parse_int",
    "parse_address",
    "parse_mode",
    # Results
    "OperationResult",
]
