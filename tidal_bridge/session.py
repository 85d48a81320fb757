"""The bridge session: one explicit owner for all runtime state.

A ``BridgeSession`` builds and wires the channel store, history, sink,
interpreter manager, session log, dispatcher and optional OSC surface from a
``BridgeConfig``.  Nothing lives in module globals, so several sessions can
coexist (tests create one per case).

Typical use::

	config = tidal_bridge.config.load_config("tidal-bridge.yaml")

	async with tidal_bridge.session.BridgeSession(config) as session:
		result = await session.dispatcher.call("tidal_eval", {"channel": "d1", "pattern": 's "bd*4"'})
"""

import asyncio
import logging
import pathlib
import signal
import time
import typing

import tidal_bridge.channel_state
import tidal_bridge.config
import tidal_bridge.dispatcher
import tidal_bridge.errors
import tidal_bridge.event_emitter
import tidal_bridge.history
import tidal_bridge.interpreter
import tidal_bridge.osc
import tidal_bridge.session_log
import tidal_bridge.sinks


logger = logging.getLogger(__name__)


class BridgeSession:

	"""Owns the runtime state of one bridge and its start/stop lifecycle."""

	def __init__ (
		self,
		config: tidal_bridge.config.BridgeConfig,
		spawn: typing.Optional[tidal_bridge.interpreter.SpawnFunction] = None,
		clock: typing.Callable[[], float] = time.time
	) -> None:

		"""Build every component. No files are written and no process is spawned yet.

		Parameters:
			config: Validated startup configuration.
			spawn: Replacement for ``asyncio.create_subprocess_exec`` (tests).
			clock: Time source for channel and history timestamps.
		"""

		self.config = config
		self.channels = tidal_bridge.channel_state.ChannelStore(clock=clock)
		self.history = tidal_bridge.history.HistoryLog(capacity=config.history_capacity, clock=clock)
		self.events = tidal_bridge.event_emitter.EventEmitter()
		self.session_log = tidal_bridge.session_log.SessionLog(config.session_log_path)

		self.interpreter: typing.Optional[tidal_bridge.interpreter.InterpreterManager] = None
		self.sink: tidal_bridge.sinks.OutputSink

		if config.use_ghci:
			self.interpreter = tidal_bridge.interpreter.InterpreterManager(
				ghci_path = config.ghci_path,
				boot_script = str(pathlib.Path(config.boot_script).expanduser()),
				ready_markers = config.ready_markers,
				ready_timeout = config.ready_timeout,
				shutdown_grace = config.shutdown_grace,
				spawn = spawn
			)
			self.sink = tidal_bridge.sinks.ProcessSink(self.interpreter)
		else:
			self.sink = tidal_bridge.sinks.FileSink(pathlib.Path(config.tidal_file).expanduser())

		self.dispatcher = tidal_bridge.dispatcher.RequestDispatcher(
			self.channels,
			self.history,
			self.sink,
			events = self.events,
			clock = clock
		)

		self.osc: typing.Optional[tidal_bridge.osc.OscServer] = None

		if config.osc_enabled:
			self.osc = tidal_bridge.osc.OscServer(
				self.dispatcher,
				receive_port = config.osc_receive_port,
				send_port = config.osc_send_port,
				send_host = config.osc_send_host
			)

		self._started = False

	@property
	def mode_label (self) -> str:

		return "Direct GHCi" if self.config.use_ghci else "File-based"

	@property
	def started (self) -> bool:

		return self._started

	async def start (self) -> None:

		"""Open the session log, start the interpreter (ghci mode) and the OSC surface.

		An interpreter that fails to start is logged, not raised: the first
		operation that needs it will try again.
		"""

		if self._started:
			return

		self.session_log.start(self.mode_label)
		self.events.on("command", self.session_log.record)

		if self.interpreter is not None:
			try:
				await self.interpreter.start()
			except tidal_bridge.errors.BridgeError as exc:
				logger.error(f"Interpreter unavailable at startup, will retry on first command: {exc}")

		if self.osc is not None:
			await self.osc.start()

		self._started = True
		logger.info(f"Session started. Mode: {self.mode_label}")

	async def stop (self) -> None:

		"""Stop inbound surfaces first, then shut the interpreter down."""

		if not self._started:
			return

		logger.info("Shutting down session...")

		if self.osc is not None:
			await self.osc.stop()

		if self.interpreter is not None:
			await self.interpreter.stop()

		self.events.off("command", self.session_log.record)
		self._started = False
		logger.info("Session closed")

	async def __aenter__ (self) -> "BridgeSession":

		await self.start()
		return self

	async def __aexit__ (self, *exc_info: typing.Any) -> None:

		await self.stop()


async def wait_for_stop_signal () -> None:

	"""
	Block until SIGINT or SIGTERM is received.
	"""

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()

	def _request_stop () -> None:

		"""
		Signal handler to request a clean shutdown.
		"""

		stop_event.set()

	for sig in (signal.SIGINT, signal.SIGTERM):
		loop.add_signal_handler(sig, _request_stop)

	try:
		await stop_event.wait()

	finally:
		for sig in (signal.SIGINT, signal.SIGTERM):
			loop.remove_signal_handler(sig)
