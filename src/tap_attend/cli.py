"""Command-line front end for the card-reader kiosk."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import threading
from dataclasses import replace
from typing import List, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from .admin import AdminGate, OpenGate, TotpAdminGate
from .config import KioskSettings, load_env
from .device import SerialTransport
from .directory import LocalDirectory
from .dispatcher import Outcome, ScanMode
from .kiosk import Kiosk, build_kiosk
from .ledger import JsonlLedger
from .utils.logger import logger, set_log_profile, step, success

console = Console()

_STYLES = {True: "green", False: "red"}


def render_outcome(outcome: Outcome) -> None:
    style = _STYLES[outcome.ok]
    icon = "✓" if outcome.ok else "✗"
    stamp = outcome.at.strftime("%H:%M:%S")
    console.print(f"[dim]{stamp}[/dim] [{style}]{icon} {outcome.title}[/{style}] {outcome.message}")


def _admin_gate(settings: KioskSettings) -> AdminGate:
    if settings.admin_totp_secret:
        return TotpAdminGate(settings.admin_totp_secret)
    return OpenGate()


def _require_admin(settings: KioskSettings) -> bool:
    gate = _admin_gate(settings)
    if isinstance(gate, OpenGate):
        return True
    code = Prompt.ask("Admin passcode", password=True, console=console)
    if gate.verify(code):
        return True
    logger.error("Invalid admin passcode")
    return False


async def _read_manual_ids(kiosk: Kiosk) -> None:
    loop = asyncio.get_running_loop()
    lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def _pump() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # loop already closed during shutdown
            return

    threading.Thread(target=_pump, name="manual-entry", daemon=True).start()
    while True:
        line = await lines.get()
        if line is None:
            return
        if line.strip():
            await kiosk.submit_manual_id(line)


async def run_kiosk(settings: KioskSettings, port: Optional[str]) -> None:
    kiosk = build_kiosk(settings)
    kiosk.add_listener(render_outcome)
    async with kiosk:
        step(f"Scanner mode: {kiosk.mode.value}")
        status = await kiosk.connect_device(port)
        if status.connected:
            console.print("Place a card near the reader, or type a card id and press Enter.")
        else:
            console.print("[yellow]Reader unavailable; manual entry only.[/yellow] Type a card id and press Enter.")
        await _read_manual_ids(kiosk)


async def submit_once(settings: KioskSettings, card_id: str) -> Outcome:
    kiosk = build_kiosk(settings)
    kiosk.add_listener(render_outcome)
    return await kiosk.submit_manual_id(card_id)


def show_status(settings: KioskSettings, person_id: str) -> None:
    status = asyncio.run(JsonlLedger(settings.ledger_file).get_current_status(person_id))
    console.print(f"{person_id}: [bold]{status.value}[/bold]")


def show_history(settings: KioskSettings, person_id: str) -> None:
    records = JsonlLedger(settings.ledger_file).history(person_id)
    if not records:
        console.print(f"No attendance records for {person_id}")
        return
    table = Table(box=None, header_style="bold blue")
    table.add_column("Time")
    table.add_column("Type", style="bold")
    table.add_column("Method", style="blue")
    table.add_column("Name")
    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.type.value,
            record.method.value,
            record.display_name,
        )
    console.print(table)


def show_ports() -> None:
    devices = SerialTransport().list_devices()
    if not devices:
        console.print("No serial devices found")
        return
    table = Table(box=None, header_style="bold blue")
    table.add_column("Port", style="bold")
    table.add_column("Description")
    table.add_column("VID:PID", style="blue")
    table.add_column("Reader")
    for info in devices:
        ids = f"{info.vid:04X}:{info.pid:04X}" if info.vid is not None and info.pid is not None else "-"
        table.add_row(info.path, info.description, ids, info.vendor or "")
    console.print(table)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tap-attend", description="Card-reader attendance kiosk")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--env-file", help="Read settings from this .env file (default: .env)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Connect the reader and record scans until EOF or Ctrl+C")
    run.add_argument("--port", help="Serial device path (default: SCANNER_PORT or auto-detect)")
    run.add_argument("--mode", choices=[m.value for m in ScanMode], help="Override SCANNER_MODE")

    manual = sub.add_parser("manual", help="Submit one manually typed card id")
    manual.add_argument("card_id")
    manual.add_argument("--mode", choices=[m.value for m in ScanMode], help="Override SCANNER_MODE")

    status = sub.add_parser("status", help="Show a person's current attendance status")
    status.add_argument("person_id")

    history = sub.add_parser("history", help="List a person's ledger records (admin)")
    history.add_argument("person_id")

    sub.add_parser("ports", help="List serial ports and known card readers")
    sub.add_parser("refresh-directory", help="Reload and validate the directory cache file (admin)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    load_env(args.env_file)
    set_log_profile("debug" if args.debug else os.getenv("LOG_PROFILE", "user"))

    try:
        settings = KioskSettings.from_env()
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        return 2

    if getattr(args, "mode", None):
        settings = replace(settings, mode=args.mode)

    if args.command == "run":
        try:
            asyncio.run(run_kiosk(settings, args.port))
        except KeyboardInterrupt:
            console.print()
        except ValueError as exc:
            logger.error("Cannot start kiosk: %s", exc)
            return 2
        success("Kiosk stopped")
        return 0
    if args.command == "manual":
        try:
            outcome = asyncio.run(submit_once(settings, args.card_id))
        except ValueError as exc:
            logger.error("Cannot start kiosk: %s", exc)
            return 2
        return 0 if outcome.ok else 1
    if args.command == "status":
        show_status(settings, args.person_id)
        return 0
    if args.command == "ports":
        show_ports()
        return 0

    if not _require_admin(settings):
        return 2
    if args.command == "history":
        show_history(settings, args.person_id)
    elif args.command == "refresh-directory":
        count = LocalDirectory(path=settings.directory_file).refresh()
        success(f"Directory reloaded: {count} people")
    return 0


if __name__ == "__main__":
    sys.exit(main())
