"""
userapp-flasher CLI

Command-line interface for validating, encoding and installing user-app
firmware over Bluetooth LE.
"""

import asyncio
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from userapp_flasher.core.actions import inspect_firmware, upload_firmware, write_script
from userapp_flasher.core.parsing import (
    parse_address as _parse_address_core,
    parse_int as _parse_int_core,
    parse_mode as _parse_mode_core,
)
from userapp_flasher.core.results import OperationResult
from userapp_flasher.errors import TransportError
from userapp_flasher.models import (
    DEFAULT_PROFILE,
    DeviceProfile,
    get_profile,
    list_profiles,
    profile_with_overrides,
)
from userapp_flasher.protocol.ble_transport import DeviceFilter, scan_peripherals

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("userapp_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Utilities for Ledx user-layer apps")

EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_NOT_FOUND = 3


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """
    Parse an address/length option.

    CLI wrapper around core.parsing.parse_int that converts ValueError to
    typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_int_core(value)
    except ValueError as e:
        raise typer.BadParameter(f"{label}: {e}")


def parse_address(value: Optional[str]) -> Optional[str]:
    """CLI wrapper around core.parsing.parse_address."""
    try:
        return _parse_address_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_device_filter(name: Optional[str], mac: Optional[str]) -> DeviceFilter:
    """Require at least one of --name/--mac before any core logic runs."""
    address = parse_address(mac)
    if not name and not address:
        raise typer.BadParameter("Provide --name and/or --mac to select the device")
    return DeviceFilter(name=name or None, address=address)


def resolve_profile(
    profile: str,
    text_addr: Optional[str] = None,
    text_len: Optional[str] = None,
    data_addr: Optional[str] = None,
    data_len: Optional[str] = None,
) -> DeviceProfile:
    """Look up a profile and apply any region overrides from the command line."""
    try:
        base = get_profile(profile)
    except KeyError as e:
        raise typer.BadParameter(str(e.args[0]))
    try:
        return profile_with_overrides(
            base,
            text_addr=parse_int(text_addr, "text-addr"),
            text_len=parse_int(text_len, "text-len"),
            data_addr=parse_int(data_addr, "data-addr"),
            data_len=parse_int(data_len, "data-len"),
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))


def print_result(result: OperationResult, verbose: bool = False) -> None:
    """Print an OperationResult's warnings, errors and summary."""
    for warning in result.warnings:
        print_warning(warning)
    for error in result.errors:
        print_error(error)
    if verbose:
        console.print(result.to_summary(), style="dim")


def _deliver(
    commit: bool,
    input_path: str,
    name: Optional[str],
    mac: Optional[str],
    profile: DeviceProfile,
    dry_run: bool,
    verbose: bool,
) -> None:
    device_filter = build_device_filter(name, mac)

    console.print(f"Input:   {input_path}")
    console.print(f"Profile: {profile.name}")
    console.print(f"Target:  {device_filter.describe()}")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.1f}%]"),
        console=console,
        transient=dry_run,
    ) as progress:
        task = progress.add_task("Uploading", total=100)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done * 100.0 / max(total, 1))

        result = upload_firmware(
            input_path,
            device_filter,
            profile,
            commit=commit,
            dry_run=dry_run,
            progress_cb=on_progress,
        )

    print_result(result, verbose=verbose)
    if not result.ok:
        sys.exit(EXIT_NOT_FOUND if result.metadata.get("not_found") else EXIT_ERROR)

    if dry_run:
        print_success(
            f"Dry run OK: {result.writes} instructions, checksum 0x{result.checksum:04X}"
        )
    else:
        print_success(f"{'Installed' if commit else 'Running'} on {result.device}")


@app.command()
def install(
    input_path: str = typer.Option(..., "--input", "-i", help="Input firmware (.elf)"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Advertised device name"),
    mac: Optional[str] = typer.Option(None, "--mac", "-m", help="Device address (AA:BB:CC:DD:EE:FF)"),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Device profile"),
    text_addr: Optional[str] = typer.Option(None, "--text-addr", help="Override .text region base"),
    text_len: Optional[str] = typer.Option(None, "--text-len", help="Override .text region length"),
    data_addr: Optional[str] = typer.Option(None, "--data-addr", help="Override .data region base"),
    data_len: Optional[str] = typer.Option(None, "--data-len", help="Override .data region length"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and encode only, no Bluetooth"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print operation summary"),
) -> None:
    """Install a program onto a device."""
    print_header("Install User App")
    prof = resolve_profile(profile, text_addr, text_len, data_addr, data_len)
    _deliver(True, input_path, name, mac, prof, dry_run, verbose)


@app.command()
def run(
    input_path: str = typer.Option(..., "--input", "-i", help="Input firmware (.elf)"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Advertised device name"),
    mac: Optional[str] = typer.Option(None, "--mac", "-m", help="Device address (AA:BB:CC:DD:EE:FF)"),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Device profile"),
    text_addr: Optional[str] = typer.Option(None, "--text-addr", help="Override .text region base"),
    text_len: Optional[str] = typer.Option(None, "--text-len", help="Override .text region length"),
    data_addr: Optional[str] = typer.Option(None, "--data-addr", help="Override .data region base"),
    data_len: Optional[str] = typer.Option(None, "--data-len", help="Override .data region length"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and encode only, no Bluetooth"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print operation summary"),
) -> None:
    """Run a program on a device without persisting it."""
    print_header("Run User App")
    prof = resolve_profile(profile, text_addr, text_len, data_addr, data_len)
    _deliver(False, input_path, name, mac, prof, dry_run, verbose)


@app.command()
def script(
    mode: str = typer.Argument(..., help="run | commit"),
    input_path: str = typer.Argument(..., help="Input firmware (.elf)"),
    output_path: str = typer.Argument(..., help="Output script (.py)"),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Device profile"),
) -> None:
    """Generate a standalone bleak upload script."""
    try:
        commit = _parse_mode_core(mode)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    prof = resolve_profile(profile)
    result = write_script(input_path, output_path, prof, commit=commit)
    print_result(result)
    if not result.ok:
        sys.exit(EXIT_ERROR)
    print_success(f"Wrote {result.writes} commands to {output_path}")
    console.print(f"Run it with: python {output_path} <device-address>", style="dim")


@app.command()
def inspect(
    input_path: str = typer.Argument(..., help="Input firmware (.elf)"),
    profile: str = typer.Option(DEFAULT_PROFILE, "--profile", help="Device profile"),
) -> None:
    """Show firmware sections and check them against a device profile."""
    prof = resolve_profile(profile)
    print_header(f"Firmware: {input_path}")
    result = inspect_firmware(input_path, prof)

    sections = result.metadata.get("sections", {})
    if sections:
        table = Table(title="Sections")
        table.add_column("Name", style="cyan")
        table.add_column("Address", style="yellow")
        table.add_column("Size", style="green")
        for sec_name, (address, size) in sections.items():
            table.add_row(sec_name, f"0x{address:08X}", f"{size:,}")
        console.print(table)

    print_result(result)
    if not result.ok:
        sys.exit(EXIT_ERROR)
    print_success(f"Layout matches profile {prof.name}")


def _yes_no(flag: Optional[bool]) -> str:
    if flag is None:
        return "?"
    return "Yes" if flag else "No"


@app.command()
def scan(
    seconds: float = typer.Option(10.0, "--seconds", "-s", help="Scan duration per adapter"),
) -> None:
    """List nearby BLE peripherals on every adapter."""
    print_header("BLE Scan")
    try:
        results = asyncio.run(scan_peripherals(duration=seconds))
    except TransportError as e:
        print_error(str(e))
        sys.exit(EXIT_ERROR)

    if not results:
        print_warning("No Bluetooth adapters found")
        return

    for adapter, peripherals in results.items():
        if not peripherals:
            print_warning(f"{adapter}: no BLE peripherals found")
            continue
        table = Table(title=f"Adapter {adapter}")
        table.add_column("Name", style="cyan")
        table.add_column("Address", style="magenta")
        table.add_column("RSSI", style="green")
        table.add_column("Connectable", style="yellow")
        table.add_column("Connected", style="yellow")
        table.add_column("Manufacturer Data", style="dim")
        for p in peripherals:
            mfr = ", ".join(f"{k:#06x}={v.hex()}" for k, v in p.manufacturer_data.items())
            table.add_row(
                p.name or "(peripheral name unknown)",
                p.address,
                "-" if p.rssi is None else str(p.rssi),
                _yes_no(p.connectable),
                _yes_no(p.connected),
                mfr or "-",
            )
        console.print(table)


@app.command()
def profiles() -> None:
    """List known device profiles."""
    print_header("Device Profiles")
    table = Table(title="Profiles")
    table.add_column("Profile", style="cyan")
    table.add_column(".text region", style="green")
    table.add_column(".data region", style="yellow")
    table.add_column("Description", style="dim")
    for prof_name in list_profiles():
        prof = get_profile(prof_name)
        table.add_row(prof.name, prof.text.describe(), prof.data.describe(), prof.description)
    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
