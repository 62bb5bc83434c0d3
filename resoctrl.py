#!/usr/bin/env python3
"""
ResoCtrl — Remote Control for Resolume
CLI entry point. Also launches the browser UI.

Layer, clip and column numbers are the ones shown in the mixer (1 = first).

Usage:
    python resoctrl.py ui
    python resoctrl.py status
    python resoctrl.py trigger 1 3          # layer 1, clip 3
    python resoctrl.py clear 2
    python resoctrl.py opacity 1 0.5
    python resoctrl.py column 4
    python resoctrl.py settings --host 192.168.1.20 --port 8080
    python resoctrl.py --host 10.0.0.5 status    # one-off override
"""

import sys
import os
import asyncio
import argparse
import logging

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import httpx

from core import remote
from core.models import ConnectionSettings
from core.settings import load_settings, save_settings, get_settings_path

__version__ = "0.1.0"


def _number(val: str) -> int:
    """argparse type: a 1-based slot number."""
    n = int(val)
    if n < 1:
        raise argparse.ArgumentTypeError(f"numbers start at 1, got {n}")
    return n


def _opacity(val: str) -> float:
    f = float(val)
    if f != f or not 0.0 <= f <= 1.0:
        raise argparse.ArgumentTypeError(f"opacity must be between 0 and 1, got {val}")
    return f


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


def _settings(args) -> ConnectionSettings:
    """Saved settings with any --host/--port override applied."""
    settings = load_settings()
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if overrides:
        settings = ConnectionSettings.model_validate({**settings.model_dump(), **overrides})
    return settings


def _send(args, label, call, *call_args):
    """Run one mixer command and report the outcome."""
    settings = _settings(args)

    async def run():
        async with _client() as client:
            return await call(client, settings, *call_args)

    if not asyncio.run(run()):
        raise RuntimeError(f"{label} failed (mixer at {settings.label()})")
    print(f"{label}: sent to {settings.label()}")


def cmd_status(args):
    """Print the mixer's composition."""
    settings = _settings(args)

    async def run():
        async with _client() as client:
            return await remote.fetch_composition(client, settings)

    comp = asyncio.run(run())
    print(f"Composition: {comp.name or 'Untitled'} ({settings.label()})")
    print(f"  Layers: {len(comp.layers)}  Columns: {comp.column_count}")
    for li, layer in enumerate(comp.layers):
        name = layer.name or f"Layer {li + 1}"
        print(f"  [{li + 1}] {name:20s} opacity {layer.opacity * 100:3.0f}%")
        for ci, clip in enumerate(layer.clips):
            marker = "▶" if clip.connected else " "
            print(f"      {marker} {ci + 1:2d}. {clip.name or 'Clip'}")


def cmd_trigger(args):
    """Trigger a clip."""
    _send(args, f"Trigger layer {args.layer} clip {args.clip}",
          remote.trigger_clip, args.layer - 1, args.clip - 1)


def cmd_clear(args):
    """Clear a layer."""
    _send(args, f"Clear layer {args.layer}", remote.clear_layer, args.layer - 1)


def cmd_opacity(args):
    """Set a layer's opacity."""
    _send(args, f"Opacity layer {args.layer} = {args.value:.2f}",
          remote.set_opacity, args.layer - 1, args.value)


def cmd_column(args):
    """Trigger a column."""
    _send(args, f"Trigger column {args.column}", remote.trigger_column, args.column - 1)


def cmd_settings(args):
    """Show or save the mixer connection."""
    if args.host is not None or args.port is not None:
        settings = _settings(args)
        path = save_settings(settings)
        print(f"Saved {settings.label()} to {path}")
    else:
        settings = load_settings()
        print(f"Mixer: {settings.label()} ({get_settings_path()})")


def cmd_ui(args):
    """Launch the browser UI."""
    from server import start
    start(port=args.ui_port)


def cmd_desktop(args):
    """Launch the UI in a native window."""
    from desktop import main as launch_desktop
    launch_desktop()


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="resoctrl",
        description="ResoCtrl — remote control for Resolume",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", help="Mixer host (overrides saved settings)")
    parser.add_argument("--port", type=int, help="Mixer webserver port (overrides saved settings)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show layers and clips")

    # trigger
    p = sub.add_parser("trigger", help="Trigger a clip")
    p.add_argument("layer", type=_number, help="Layer number")
    p.add_argument("clip", type=_number, help="Clip number")

    # clear
    p = sub.add_parser("clear", help="Clear a layer")
    p.add_argument("layer", type=_number, help="Layer number")

    # opacity
    p = sub.add_parser("opacity", help="Set layer opacity")
    p.add_argument("layer", type=_number, help="Layer number")
    p.add_argument("value", type=_opacity, help="Opacity 0.0-1.0")

    # column
    p = sub.add_parser("column", help="Trigger a column")
    p.add_argument("column", type=_number, help="Column number")

    # settings
    sub.add_parser("settings", help="Show settings, or save --host/--port")

    # ui
    p = sub.add_parser("ui", help="Launch the browser UI")
    p.add_argument("--ui-port", type=int, default=7860, help="Local UI port")

    # desktop
    sub.add_parser("desktop", help="Launch the UI in a native window")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "trigger": cmd_trigger,
        "clear": cmd_clear,
        "opacity": cmd_opacity,
        "column": cmd_column,
        "settings": cmd_settings,
        "ui": cmd_ui,
        "desktop": cmd_desktop,
    }

    if args.command in commands:
        try:
            commands[args.command](args)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
