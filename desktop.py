#!/usr/bin/env python3
"""
ResoCtrl — Native Desktop App (PyWebView)
The browser UI in its own window, for a dedicated control laptop.

The local server runs on a background thread. Closing the window asks uvicorn
to exit, which runs the app's shutdown and releases every image the session
holds.

Usage:
    python3 desktop.py
"""

import sys
import os
import socket
import threading

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.settings import load_settings

# --- Window ---
APP_TITLE = "ResoCtrl"
FIRST_PORT = 7860
PORT_ATTEMPTS = 50
WINDOW_SIZE = (1280, 800)
MIN_SIZE = (800, 500)
BG_COLOR = "#020617"
STARTUP_TIMEOUT = 10


def find_free_port(first=FIRST_PORT, attempts=PORT_ATTEMPTS):
    """First local port in [first, first + attempts) nothing is bound to."""
    for port in range(first, first + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(("127.0.0.1", port))
            except OSError:
                continue
            return port
    raise RuntimeError(f"No free port between {first} and {first + attempts - 1}")


class LocalServer:
    """uvicorn on a daemon thread, with a ready signal and a clean stop."""

    def __init__(self, port):
        import uvicorn
        from server import app

        ready = self.ready = threading.Event()

        class _Server(uvicorn.Server):
            async def startup(self, sockets=None):
                await super().startup(sockets)
                ready.set()

        config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning", access_log=False)
        self.port = port
        self.server = _Server(config)
        self.thread = threading.Thread(target=self.server.run, name="resoctrl-server", daemon=True)

    @property
    def url(self):
        return f"http://127.0.0.1:{self.port}"

    def start(self, timeout=STARTUP_TIMEOUT) -> bool:
        self.thread.start()
        return self.ready.wait(timeout=timeout)

    def stop(self, timeout=5):
        self.server.should_exit = True
        self.thread.join(timeout=timeout)


def main():
    local = LocalServer(find_free_port())
    if not local.start():
        print(f"Error: local server did not start on port {local.port}", file=sys.stderr)
        local.stop()
        sys.exit(1)

    import webview

    mixer = load_settings()
    webview.create_window(
        f"{APP_TITLE} — {mixer.label()}",
        url=local.url,
        width=WINDOW_SIZE[0],
        height=WINDOW_SIZE[1],
        min_size=MIN_SIZE,
        background_color=BG_COLOR,
        text_select=False,
    )

    # Blocks until the window closes
    webview.start(debug=False)
    local.stop()


if __name__ == "__main__":
    main()
