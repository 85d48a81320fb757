import argparse
import asyncio
import logging
import sys
import typing

import tidal_bridge.config
import tidal_bridge.errors
import tidal_bridge.mcp_app
import tidal_bridge.session
import tidal_bridge.ws_server


logger = logging.getLogger(__name__)


def parse_args (argv: typing.Optional[typing.Sequence[str]] = None) -> argparse.Namespace:

	"""Parse command-line flags. Flags override the config file and environment."""

	parser = argparse.ArgumentParser(prog="tidal-bridge", description="Drive TidalCycles from an AI agent over MCP")
	parser.add_argument("--config", default=None, help="YAML configuration file")
	parser.add_argument("--mode", choices=tidal_bridge.config.MODES, default=None, help="Write to a file or drive GHCi directly")
	parser.add_argument("--transport", choices=tidal_bridge.config.TRANSPORTS, default=None, help="MCP over stdio, or JSON-RPC over WebSocket")
	parser.add_argument("--tidal-file", dest="tidal_file", default=None, help="Output file for file mode")
	parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

	return parser.parse_args(argv)


def main (argv: typing.Optional[typing.Sequence[str]] = None) -> None:

	"""
	Main entry point for the bridge.
	"""

	args = parse_args(argv)

	# stdout carries the MCP stdio transport, so logs go to stderr.
	logging.basicConfig(level=args.log_level.upper(), stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

	try:
		config = tidal_bridge.config.load_config(
			args.config,
			mode = args.mode,
			transport = args.transport,
			tidal_file = args.tidal_file
		)
	except tidal_bridge.errors.ConfigError as exc:
		logger.error(f"Invalid configuration: {exc}")
		sys.exit(2)

	session = tidal_bridge.session.BridgeSession(config)

	logger.info(f"TidalCycles bridge starting. Mode: {session.mode_label}, transport: {config.transport}")

	if config.transport == "websocket":
		try:
			asyncio.run(tidal_bridge.ws_server.serve(session))
		except KeyboardInterrupt:
			pass
		return

	mcp = tidal_bridge.mcp_app.create_mcp_app(session)

	try:
		mcp.run(transport="stdio")
	except KeyboardInterrupt:
		pass


if __name__ == "__main__":
	main()
