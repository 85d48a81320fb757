"""WebSocket transport for external clients (web UIs, other apps).

Speaks a small subset of JSON-RPC 2.0 (``initialize``, ``tools/list`` and
``tools/call``) against the same dispatcher the MCP stdio server uses, and
broadcasts every composed command to all connected clients::

	{"type": "command", "operation": "eval", "channel": "d1", "command": "d1 $ s \\"bd\\"", "timestamp": 1714563200.0}

Clients may also send ``{"type": "ping"}`` and receive
``{"type": "pong", "timestamp": <ms>}``; protocol-level pings are handled by
``websockets`` itself.
"""

import json
import logging
import time
import typing

import websockets.asyncio.server
import websockets.exceptions

import tidal_bridge.constants
import tidal_bridge.dispatcher
import tidal_bridge.session


logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602

PROTOCOL_VERSION = "2024-11-05"


class WebSocketServer:

	"""Serve dispatcher operations over WebSocket and broadcast composed commands."""

	def __init__ (
		self,
		dispatcher: tidal_bridge.dispatcher.RequestDispatcher,
		host: str = tidal_bridge.constants.DEFAULT_WS_HOST,
		port: int = tidal_bridge.constants.DEFAULT_WS_PORT
	) -> None:

		self._dispatcher = dispatcher
		self._host = host
		self._port = port
		self._server: typing.Optional[websockets.asyncio.server.Server] = None
		self._clients: typing.Set[websockets.asyncio.server.ServerConnection] = set()

	@property
	def port (self) -> typing.Optional[int]:

		"""The bound port (useful when started with port 0)."""

		if self._server is None:
			return None

		for sock in self._server.sockets:
			return typing.cast(int, sock.getsockname()[1])

		return None

	@property
	def client_count (self) -> int:

		return len(self._clients)

	async def start (self) -> None:

		self._server = await websockets.asyncio.server.serve(
			self._handle_client,
			self._host,
			self._port,
			ping_interval = 30,
			ping_timeout = 60
		)

		self._dispatcher.events.on("command", self._broadcast_command)
		logger.info(f"WebSocket server listening on ws://{self._host}:{self.port}")

	async def stop (self) -> None:

		if self._server is None:
			return

		self._dispatcher.events.off("command", self._broadcast_command)
		self._server.close()
		await self._server.wait_closed()
		self._server = None
		logger.info("WebSocket server closed")

	async def _handle_client (self, websocket: websockets.asyncio.server.ServerConnection) -> None:

		self._clients.add(websocket)
		logger.info(f"WebSocket client connected from {websocket.remote_address}")

		try:
			async for raw in websocket:
				reply = await self.handle_message(raw)
				if reply is not None:
					await websocket.send(json.dumps(reply))

		except websockets.exceptions.ConnectionClosed:
			pass

		finally:
			self._clients.discard(websocket)
			logger.info(f"WebSocket client disconnected: {websocket.remote_address}")

	async def handle_message (self, raw: typing.Union[str, bytes]) -> typing.Optional[typing.Dict[str, typing.Any]]:

		"""Answer one incoming message. Returns ``None`` for notifications."""

		try:
			message = json.loads(raw)
		except ValueError:
			logger.warning("WebSocket message is not valid JSON")
			return _error(None, PARSE_ERROR, "Parse error")

		if not isinstance(message, dict):
			return _error(None, INVALID_REQUEST, "Invalid Request")

		if message.get("type") == "ping":
			return {"type": "pong", "timestamp": int(time.time() * 1000)}

		message_id = message.get("id")
		method = message.get("method")
		params = message.get("params") or {}

		if not isinstance(method, str):
			return _error(message_id, INVALID_REQUEST, "Invalid Request")

		if not isinstance(params, dict):
			return _error(message_id, INVALID_PARAMS, "params must be an object")

		if method == "initialize":
			result: typing.Dict[str, typing.Any] = {
				"protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
				"capabilities": {"tools": {}},
				"serverInfo": {"name": tidal_bridge.constants.SERVER_NAME, "version": tidal_bridge.constants.SERVER_VERSION},
			}

		elif method == "tools/list":
			result = {"tools": [
				{"name": op.name, "description": op.description, "inputSchema": op.input_schema}
				for op in tidal_bridge.dispatcher.OPERATIONS
			]}

		elif method == "tools/call":
			arguments = params.get("arguments") or {}

			if not isinstance(params.get("name"), str) or not isinstance(arguments, dict):
				return _error(message_id, INVALID_PARAMS, "tools/call requires a tool name and an arguments object")

			outcome = await self._dispatcher.call(params["name"], arguments)
			result = {"content": [{"type": "text", "text": outcome.text}], "isError": not outcome.ok}

		elif method.startswith("notifications/"):
			return None

		else:
			return _error(message_id, METHOD_NOT_FOUND, f"Method not found: {method}")

		if message_id is None:
			return None

		return {"jsonrpc": "2.0", "id": message_id, "result": result}

	def _broadcast_command (self, record: tidal_bridge.dispatcher.CommandRecord) -> None:

		if not self._clients:
			return

		message = json.dumps({
			"type": "command",
			"operation": record.operation,
			"channel": record.channel,
			"command": record.command,
			"timestamp": record.timestamp,
			"channels": self._dispatcher.channels.snapshot(),
		})

		websockets.asyncio.server.broadcast(self._clients, message)


def _error (message_id: typing.Any, code: int, text: str) -> typing.Dict[str, typing.Any]:

	return {"jsonrpc": "2.0", "id": message_id, "error": {"code": code, "message": text}}


async def serve (session: tidal_bridge.session.BridgeSession) -> None:

	"""Run the session behind a WebSocket server until SIGINT or SIGTERM."""

	server = WebSocketServer(session.dispatcher, host=session.config.ws_host, port=session.config.ws_port)

	async with session:

		await server.start()

		try:
			await tidal_bridge.session.wait_for_stop_signal()

		finally:
			await server.stop()
