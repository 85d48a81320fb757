"""Fixed conventions shared with the TidalCycles runtime.

Channel names, command templates and interpreter defaults live here so that
every surface (MCP tools, WebSocket, OSC) composes exactly the same text.
"""

import typing


CHANNELS: typing.Tuple[str, ...] = tuple(f"d{i}" for i in range(1, 10))
"""The fixed set of addressable channels, in identifier order."""

ASSIGN_OPERATOR = "$"

HUSH_COMMAND = "hush"
SILENCE_TEMPLATE = "silence {channel}"
SOLO_TEMPLATE = "solo $ {channel}"
UNSOLO_COMMAND = "unsolo $ d1"

# Interpreter process
DEFAULT_GHCI_PATH = "ghci"
DEFAULT_BOOT_SCRIPT = "BootTidal.hs"
DEFAULT_READY_MARKERS: typing.Tuple[str, ...] = ("Connected to SuperDirt", "tidal>")
DEFAULT_READY_TIMEOUT = 10.0
DEFAULT_SHUTDOWN_GRACE = 0.5

# Files
DEFAULT_TIDAL_FILENAME = "tidal-mcp-output.tidal"
DEFAULT_LOG_FILENAME = "tidal-mcp-session.log"
FILE_HEADER_TITLE = "TidalCycles MCP Server"

# History
DEFAULT_HISTORY_LIMIT = 10
DEFAULT_HISTORY_CAPACITY = 1000

# WebSocket / OSC surfaces
DEFAULT_WS_HOST = "localhost"
DEFAULT_WS_PORT = 8080
DEFAULT_OSC_RECEIVE_PORT = 9010
DEFAULT_OSC_SEND_PORT = 9011
DEFAULT_OSC_SEND_HOST = "127.0.0.1"

SERVER_NAME = "tidal-mcp-server"
SERVER_VERSION = "1.0.0"


def compose_eval (channel: str, pattern: str) -> str:

	"""Join a channel and a pattern into a full evaluation, e.g. ``d1 $ s "bd"``."""

	return f"{channel} {ASSIGN_OPERATOR} {pattern}"
