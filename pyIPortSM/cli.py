"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from pyIPortSM.bridge import PanelBridge
from pyIPortSM.codec import (
    DEFAULT_PANEL_PORT,
    LedReport,
    decode,
    format_query_command,
    format_set_command,
)
from pyIPortSM.color import DeviceColor, classify_mode, rgb_to_hsv
from pyIPortSM.config import PanelConfig, config_to_yaml, load_config
from pyIPortSM.connection import PanelConnection

app = typer.Typer(help="Bridge an iPort SM button panel to home automation")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

BOLD = "\033[1m"
GREEN = "\033[32m"
CYAN = "\033[36m"
YELLOW = "\033[33m"
RED = "\033[31m"
RESET = "\033[0m"


class ColourFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        logging.DEBUG: CYAN,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: RED + BOLD,
    }

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        text = (
            f"{BOLD}{ts}{RESET} "
            f"{colour}{record.levelname:<8s}{RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColourFormatter())
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    root.addHandler(handler)
    # aiohttp logs every connection at DEBUG.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _load(config_path: Path) -> PanelConfig:
    try:
        return load_config(config_path)
    except (OSError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


# ---------------------------------------------------------------------------
# One-shot panel access
# ---------------------------------------------------------------------------


async def _open_panel(ip: str, port: int, timeout: float) -> PanelConnection:
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(ip, port), timeout
    )
    return PanelConnection(reader, writer)


async def _send_set(ip: str, port: int, timeout: float, color: DeviceColor) -> None:
    conn = await _open_panel(ip, port, timeout)
    try:
        conn.write(format_set_command(color.r, color.g, color.b))
        await asyncio.wait_for(conn.drain(), timeout)
    finally:
        await conn.close()


async def _query(ip: str, port: int, timeout: float) -> Optional[DeviceColor]:
    conn = await _open_panel(ip, port, timeout)
    try:
        conn.write(format_query_command())
        await conn.drain()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            try:
                data = await conn.receive(timeout=remaining)
            except asyncio.TimeoutError:
                return None
            if data is None:
                return None
            for msg in decode(data):
                if isinstance(msg, LedReport):
                    return msg.color
    finally:
        await conn.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("run")
def run_bridge(
    config_path: Path = typer.Argument(..., help="YAML or JSON configuration"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Connect to the panel and handle button presses until interrupted."""
    setup_logging(verbose)
    config = _load(config_path)

    async def main() -> None:
        bridge = PanelBridge(config)
        await bridge.start()
        try:
            await asyncio.Event().wait()
        finally:
            await bridge.stop()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        typer.echo(f"\n{YELLOW}Interrupted by user.{RESET}")


@app.command("check-config")
def check_config(
    config_path: Path = typer.Argument(..., help="YAML or JSON configuration"),
    dump: bool = typer.Option(False, "--dump", help="Print the effective configuration"),
) -> None:
    """Validate a configuration file and summarise its mappings."""
    config = _load(config_path)
    typer.echo(f"{config.name}: {config.ip}:{config.port}")
    typer.echo(
        f"press mode {config.press_mode.value}, "
        f"mode match {config.mode_match.value}, "
        f"dispatch {config.dispatch_mode.value}"
    )
    if not config.button_mappings:
        typer.echo("No button mappings")
    for mapping in config.button_mappings:
        typer.echo(f"  {mapping.label}")
    if dump:
        typer.echo(config_to_yaml(config), nl=False)


@app.command("set-led")
def set_led(
    ip: str = typer.Argument(..., help="Panel address"),
    color: str = typer.Argument(..., help="Colour as #RRGGBB"),
    port: int = typer.Option(DEFAULT_PANEL_PORT, "--port", help="Panel TCP port"),
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds"),
) -> None:
    """Set the panel LED once and exit."""
    try:
        value = DeviceColor.from_hex(color)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from None
    try:
        asyncio.run(_send_set(ip, port, timeout, value))
    except (OSError, asyncio.TimeoutError) as exc:
        typer.echo(f"Error: cannot reach {ip}:{port}: {str(exc) or 'timeout'}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"LED set to {value.to_hex()}")


@app.command("query")
def query(
    ip: str = typer.Argument(..., help="Panel address"),
    port: int = typer.Option(DEFAULT_PANEL_PORT, "--port", help="Panel TCP port"),
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds"),
) -> None:
    """Ask the panel for its LED colour and print it with the mode."""
    try:
        color = asyncio.run(_query(ip, port, timeout))
    except (OSError, asyncio.TimeoutError) as exc:
        typer.echo(f"Error: cannot reach {ip}:{port}: {str(exc) or 'timeout'}", err=True)
        raise typer.Exit(code=1) from None
    if color is None:
        typer.echo("Error: no LED report received", err=True)
        raise typer.Exit(code=1)
    hsv = rgb_to_hsv(*color.as_tuple())
    typer.echo(
        f"LED {color.to_hex()} {color} "
        f"h={hsv.h:.0f} s={hsv.s:.0f} v={hsv.v:.0f} "
        f"mode={classify_mode(color, PanelConfig().mode_table)}"
    )


def run() -> None:
    app()


if __name__ == "__main__":
    run()
