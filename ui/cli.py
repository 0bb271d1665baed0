#!/usr/bin/env python3
"""
ESP flasher - command line front end
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from adapters.interfaces.transport import PortDescriptor
from config.settings import FlashSettings
from core.entities.board import BOARD_PROFILES, DEFAULT_BOARD
from modules.espflash.errors import FlashSessionError, PhaseFailure, ValidationFailure
from modules.espflash.events import SessionEvent
from modules.espflash.log_sink import LogEntry, LogLevel
from modules.espflash.progress import ProgressPrinter
from modules.espflash.validators import DEFAULT_OFFSET
from services.flash_service import FlashService

logger = logging.getLogger(__name__)

LEVEL_STYLES = {
    LogLevel.INFO: "[cyan]ℹ[/cyan]",
    LogLevel.SUCCESS: "[green]✓[/green]",
    LogLevel.WARNING: "[yellow]⚠[/yellow]",
    LogLevel.ERROR: "[red]✗[/red]",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flash firmware to ESP32 boards over a serial port"
    )
    parser.add_argument(
        "firmware",
        nargs="?",
        help="Firmware image (.bin)"
    )
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List serial ports and exit"
    )
    parser.add_argument(
        "--port", "-p",
        help="Serial port; defaults to the only ESP board found"
    )
    parser.add_argument(
        "--board", "-b",
        choices=list(BOARD_PROFILES),
        default=DEFAULT_BOARD,
        help="Target board"
    )
    parser.add_argument(
        "--offset",
        default=DEFAULT_OFFSET,
        help="Flash offset in hexadecimal"
    )
    parser.add_argument(
        "--erase-all",
        action="store_true",
        help="Erase the whole flash before writing"
    )
    parser.add_argument(
        "--baud",
        type=int,
        help="Baud rate (overrides ESPFLASH_BAUD_RATE)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )
    return parser


def ports_table(ports: List[PortDescriptor]) -> Table:
    table = Table(title="Serial Ports")
    table.add_column("Device", style="cyan")
    table.add_column("Name")
    table.add_column("Description", style="dim")
    for port in ports:
        table.add_row(port.device or "-", port.display_name, port.description or "")
    return table


async def run(args: argparse.Namespace, console: Console) -> int:
    overrides = {"baud_rate": args.baud} if args.baud else {}
    service = FlashService(
        settings=FlashSettings.from_env(**overrides),
        progress_delegates=[ProgressPrinter()],
    )

    if args.list_ports:
        try:
            ports = service.list_ports()
        except FlashSessionError as e:
            console.print(f"[red]✗[/red] {e}")
            return 1
        if ports:
            console.print(ports_table(ports))
        else:
            console.print("[yellow]No serial ports found[/yellow]")
        return 0

    def print_entry(event_type: SessionEvent, entry: LogEntry) -> None:
        console.print(f"{LEVEL_STYLES[entry.level]} {entry.message}")

    service.session.events.add_listener(SessionEvent.LOG, print_entry)

    try:
        outcome = await service.flash_firmware(
            args.firmware,
            port=args.port,
            offset=args.offset,
            erase_all=args.erase_all,
            board=args.board,
        )
    except ValidationFailure as e:
        console.print(f"[red]✗[/red] Invalid request: {e.reason}")
        return 2
    except PhaseFailure as e:
        console.print(f"[red]✗[/red] Flash failed during {e.phase}: {e.cause}")
        return 1
    except (FlashSessionError, OSError) as e:
        console.print(f"[red]✗[/red] {e}")
        return 1
    finally:
        await service.close()

    if outcome is None:
        console.print("[yellow]Cancelled[/yellow]")
        return 1

    console.print(
        f"[green]✓[/green] Flashed {outcome.bytes_written} bytes to {outcome.board} "
        f"({outcome.chip_id}) in {outcome.elapsed_seconds:.1f}s"
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.list_ports and not args.firmware:
        parser.error("a firmware file is required unless --list-ports is given")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console = Console()
    try:
        return asyncio.run(run(args, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
