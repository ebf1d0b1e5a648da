"""
Result objects for core operations.

Provides a unified result structure the CLI can print and tests can
inspect without scraping console output.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class OperationResult:
    """
    Unified result object for all core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "install", "script")
        profile: Device profile the image was checked against
        device: Label of the device written to, if any
        bytes_len: Size of the combined data+text space covered
        checksum: CRC16 carried by the final command, if encoded
        writes: Number of rendered instructions
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    profile: str = ""
    device: str = ""
    bytes_len: int = 0
    checksum: Optional[int] = None
    writes: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.profile:
            lines.append(f"  Profile: {self.profile}")
        if self.device:
            lines.append(f"  Device: {self.device}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")
        if self.writes:
            lines.append(f"  Writes: {self.writes}")
        if self.checksum is not None:
            lines.append(f"  Checksum: 0x{self.checksum:04X}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    @classmethod
    def success(
        cls,
        operation: str,
        profile: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(ok=True, operation=operation, profile=profile, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        profile: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, profile=profile, **kwargs)
        result.errors.append(error)
        return result
