"""OSC control surface for the bridge.

Enable it with ``osc.enabled: true`` in the configuration.  The server listens
on a UDP port (default 9010) and routes control messages through the same
dispatcher as the MCP tools, so validation, state and history behave
identically.  Every composed command is echoed to a target host/port
(default 127.0.0.1:9011).

Receive Handlers
────────────────
- ``/hush``: Stop everything
- ``/unsolo``: Restore all channels
- ``/silence/<channel>``: Stop one channel
- ``/solo/<channel>``: Solo one channel
- ``/eval/<channel> <pattern>``: Evaluate a pattern

Send Events
───────────
- ``/tidal/command <operation> <channel> <command>``: After each composed command
- ``/tidal/error <message>``: When an OSC-triggered operation fails
"""

import asyncio
import logging
import typing

import pythonosc.dispatcher
import pythonosc.osc_server
import pythonosc.udp_client

import tidal_bridge.dispatcher


logger = logging.getLogger(__name__)


class OscServer:

	"""Async OSC server/client that drives a ``RequestDispatcher``."""

	def __init__ (
		self,
		dispatcher: tidal_bridge.dispatcher.RequestDispatcher,
		receive_port: int = 9010,
		send_port: int = 9011,
		send_host: str = "127.0.0.1"
	) -> None:

		self._dispatcher = dispatcher
		self._receive_port = receive_port
		self._send_port = send_port
		self._send_host = send_host

		self._server: typing.Optional[pythonosc.osc_server.AsyncIOOSCUDPServer] = None
		self._transport: typing.Optional[asyncio.BaseTransport] = None
		self._client: typing.Optional[pythonosc.udp_client.SimpleUDPClient] = None
		self._pending: typing.Set[asyncio.Task] = set()
		self._osc_dispatcher = pythonosc.dispatcher.Dispatcher()

		self._osc_dispatcher.map("/hush", self._handle_hush)
		self._osc_dispatcher.map("/unsolo", self._handle_unsolo)
		self._osc_dispatcher.map("/silence/*", self._handle_silence)
		self._osc_dispatcher.map("/solo/*", self._handle_solo)
		self._osc_dispatcher.map("/eval/*", self._handle_eval)

	@property
	def port (self) -> typing.Optional[int]:

		"""The bound UDP port (useful when started with port 0)."""

		if self._transport is None:
			return None

		return typing.cast(int, self._transport.get_extra_info("sockname")[1])

	async def start (self) -> None:

		"""Start the OSC server and feedback client."""

		self._client = pythonosc.udp_client.SimpleUDPClient(self._send_host, self._send_port)

		self._server = pythonosc.osc_server.AsyncIOOSCUDPServer(
			("127.0.0.1", self._receive_port),
			self._osc_dispatcher,
			asyncio.get_running_loop()  # type: ignore[arg-type]
		)

		transport, _ = await self._server.create_serve_endpoint()
		self._transport = transport
		self._dispatcher.events.on("command", self._on_command)

		logger.info(f"OSC listening on :{self.port}, sending to {self._send_host}:{self._send_port}")

	async def stop (self) -> None:

		"""Stop the OSC server and wait for in-flight operations."""

		if self._transport is None:
			return

		self._transport.close()
		self._transport = None
		self._dispatcher.events.off("command", self._on_command)

		if self._pending:
			await asyncio.gather(*self._pending, return_exceptions=True)

		logger.info("OSC server stopped")

	def send (self, address: str, *args: typing.Any) -> None:

		"""Send an OSC message, logging rather than raising on failure."""

		if self._client:
			try:
				self._client.send_message(address, list(args))
			except Exception as e:
				logger.warning(f"OSC send error: {e}")

	def _on_command (self, record: tidal_bridge.dispatcher.CommandRecord) -> None:

		self.send("/tidal/command", record.operation, record.channel or "", record.command)

	def _run (self, name: str, arguments: typing.Dict[str, typing.Any]) -> None:

		"""Schedule a dispatcher call from a synchronous OSC handler."""

		task = asyncio.get_running_loop().create_task(self._call(name, arguments))
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _call (self, name: str, arguments: typing.Dict[str, typing.Any]) -> None:

		result = await self._dispatcher.call(name, arguments)

		if not result.ok:
			self.send("/tidal/error", result.text)

	# Handlers

	def _handle_hush (self, address: str, *args: typing.Any) -> None:
		self._run("tidal_hush", {})

	def _handle_unsolo (self, address: str, *args: typing.Any) -> None:
		self._run("tidal_unsolo", {})

	def _handle_silence (self, address: str, *args: typing.Any) -> None:
		# address is like /silence/d1
		channel = _channel_from(address)
		if channel:
			self._run("tidal_silence", {"channel": channel})

	def _handle_solo (self, address: str, *args: typing.Any) -> None:
		channel = _channel_from(address)
		if channel:
			self._run("tidal_solo", {"channel": channel})

	def _handle_eval (self, address: str, *args: typing.Any) -> None:
		channel = _channel_from(address)
		if not channel or not args:
			logger.warning(f"Ignoring OSC {address}: expected /eval/<channel> <pattern>")
			return
		self._run("tidal_eval", {"channel": channel, "pattern": " ".join(str(arg) for arg in args)})


def _channel_from (address: str) -> typing.Optional[str]:

	parts = address.split("/")

	if len(parts) >= 3 and parts[2]:
		return parts[2]

	return None
