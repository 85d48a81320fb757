"""Lifecycle manager for the long-running GHCi/TidalCycles interpreter.

The manager owns exactly one interpreter subprocess at a time and is the only
code that decides whether it is usable.  Its life is a small state machine::

	UNSTARTED → STARTING → READY ⇄ DEGRADED → STARTING …
	                  any → SHUTTING_DOWN → STOPPED

Watcher tasks observe the child (process exit, stdin closed or failed) but
never touch the state directly.  They post events into a queue which the
manager drains before every health check, so all transitions go through the
pure ``transition()`` function.  Events are tagged with the spawn generation
they were observed on; events from an already-replaced process are dropped.

Readiness is best-effort: the manager waits for one of the configured markers
on stdout (``Connected to SuperDirt`` or the ``tidal>`` prompt) but proceeds
to READY anyway once the timeout elapses, trading a window of early writes for
availability.
"""

import asyncio
import contextlib
import enum
import logging
import typing

import tidal_bridge.constants
import tidal_bridge.errors


logger = logging.getLogger(__name__)

SpawnFunction = typing.Callable[..., typing.Awaitable[typing.Any]]

_READ_CHUNK = 4096


class State (enum.Enum):

	UNSTARTED = "unstarted"
	STARTING = "starting"
	READY = "ready"
	DEGRADED = "degraded"
	SHUTTING_DOWN = "shutting_down"
	STOPPED = "stopped"


class Event (enum.Enum):

	START = "start"
	READY_MARKER = "ready_marker"
	READY_TIMEOUT = "ready_timeout"
	SPAWN_FAILED = "spawn_failed"
	PROCESS_EXITED = "process_exited"
	STDIN_ERROR = "stdin_error"
	STDIN_CLOSED = "stdin_closed"
	WRITE_FAILED = "write_failed"
	SHUTDOWN = "shutdown"
	STOPPED = "stopped"


_FAILURES = (Event.SPAWN_FAILED, Event.PROCESS_EXITED, Event.STDIN_ERROR, Event.STDIN_CLOSED, Event.WRITE_FAILED)

_TRANSITIONS: typing.Dict[typing.Tuple[State, Event], State] = {
	(State.UNSTARTED, Event.START):         State.STARTING,
	(State.DEGRADED,  Event.START):         State.STARTING,
	(State.STARTING,  Event.READY_MARKER):  State.READY,
	(State.STARTING,  Event.READY_TIMEOUT): State.READY,
	(State.SHUTTING_DOWN, Event.STOPPED):   State.STOPPED,
}

for _failure in _FAILURES:
	_TRANSITIONS[(State.STARTING, _failure)] = State.DEGRADED
	_TRANSITIONS[(State.READY, _failure)] = State.DEGRADED

for _state in (State.UNSTARTED, State.STARTING, State.READY, State.DEGRADED):
	_TRANSITIONS[(_state, Event.SHUTDOWN)] = State.SHUTTING_DOWN


def transition (state: State, event: Event) -> State:

	"""Return the state that follows ``state`` when ``event`` is observed.

	Events that have no meaning in the current state leave it unchanged, e.g.
	a stdin close seen while shutting down, or a second exit while degraded.
	"""

	return _TRANSITIONS.get((state, event), state)


class InterpreterManager:

	"""Spawn, supervise and write to a single interpreter subprocess.

	``submit()`` is the only write path.  Each call checks health, restarts the
	interpreter at most once if it is not usable, then writes the command and
	awaits the stream drain before returning.
	"""

	def __init__ (
		self,
		ghci_path: str = tidal_bridge.constants.DEFAULT_GHCI_PATH,
		boot_script: str = tidal_bridge.constants.DEFAULT_BOOT_SCRIPT,
		ready_markers: typing.Sequence[str] = tidal_bridge.constants.DEFAULT_READY_MARKERS,
		ready_timeout: float = tidal_bridge.constants.DEFAULT_READY_TIMEOUT,
		shutdown_grace: float = tidal_bridge.constants.DEFAULT_SHUTDOWN_GRACE,
		spawn: typing.Optional[SpawnFunction] = None
	) -> None:

		"""Store launch parameters. Nothing is spawned until ``start()`` or ``submit()``.

		Parameters:
			ghci_path: Interpreter executable.
			boot_script: Passed as ``-ghci-script`` so Tidal is loaded at startup.
			ready_markers: Substrings on stdout that mean initialization finished.
			ready_timeout: Seconds to wait for a marker before assuming readiness.
			shutdown_grace: Seconds to let the child exit after stdin is closed
				before it is killed.
			spawn: Coroutine function with the signature of
				``asyncio.create_subprocess_exec``; replaceable in tests.
		"""

		self._ghci_path = ghci_path
		self._boot_script = boot_script
		self._ready_markers = tuple(ready_markers)
		self._ready_timeout = ready_timeout
		self._shutdown_grace = shutdown_grace
		self._spawn: SpawnFunction = spawn if spawn is not None else asyncio.create_subprocess_exec

		self._state = State.UNSTARTED
		self._process: typing.Optional[typing.Any] = None
		self._generation = 0
		self._events: "asyncio.Queue[typing.Tuple[int, Event, str]]" = asyncio.Queue()
		self._watchers: typing.List[asyncio.Task] = []
		self._ready = asyncio.Event()
		self._exited = asyncio.Event()
		self._reconnecting = False
		self._spawn_count = 0

	@property
	def state (self) -> State:

		"""Current state, after applying any lifecycle events observed so far."""

		self._drain_events()
		return self._state

	@property
	def is_alive (self) -> bool:

		"""Whether the interpreter is believed healthy and writable."""

		return self._check_health()

	@property
	def is_reconnecting (self) -> bool:

		return self._reconnecting

	@property
	def spawn_count (self) -> int:

		"""How many interpreter processes have been launched over this manager's life."""

		return self._spawn_count

	@property
	def pid (self) -> typing.Optional[int]:

		if self._process is None:
			return None

		return typing.cast(typing.Optional[int], getattr(self._process, "pid", None))

	@property
	def command_line (self) -> typing.List[str]:

		return [self._ghci_path, "-ghci-script", self._boot_script]

	async def start (self) -> None:

		"""Start the interpreter eagerly if it is not already healthy."""

		if self._check_health():
			logger.debug("Interpreter already running")
			return

		await self._ensure_running()

	async def submit (self, command: str) -> None:

		"""Write one command to the interpreter, restarting it first if needed.

		Raises:
			ReconnectingError: Another caller is mid-restart.
			InterpreterError: The interpreter could not be (re)started, or the
				manager has been shut down.
			SinkError: The write itself failed; the interpreter is marked
				degraded so the next call restarts it.
		"""

		if self._shutting_down():
			raise tidal_bridge.errors.InterpreterError("Interpreter has been shut down")

		if not self._check_health():
			logger.warning("Interpreter not alive, attempting reconnection...")
			await self._ensure_running()

		await self._write(command)

	async def stop (self) -> None:

		"""Close stdin so the interpreter can exit cleanly, then kill it if it has not.

		The graceful close always happens before the kill.
		"""

		self._drain_events()

		if self._state is State.STOPPED:
			return

		self._apply(Event.SHUTDOWN)

		process = self._process

		if process is not None:
			logger.info("Stopping interpreter process...")
			await self._discard(process)

		# Wakes a startup still waiting for readiness.
		self._exited.set()

		await self._cancel_watchers()
		self._process = None
		self._apply(Event.STOPPED)
		logger.info("Interpreter stopped")

	# ------------------------------------------------------------------
	# Startup
	# ------------------------------------------------------------------

	async def _ensure_running (self) -> None:

		"""Restart under the reconnect guard so overlapping callers never double-spawn."""

		if self._reconnecting:
			raise tidal_bridge.errors.ReconnectingError("GHCi is currently reconnecting, please try again in a moment")

		self._reconnecting = True

		try:
			await self._restart()

		except tidal_bridge.errors.InterpreterError as exc:
			raise tidal_bridge.errors.InterpreterError(f"Failed to reconnect to GHCi: {exc}") from exc

		finally:
			self._reconnecting = False

		logger.info("Interpreter connection established")

	async def _restart (self) -> None:

		await self._teardown()

		self._generation += 1
		generation = self._generation
		self._ready = asyncio.Event()
		self._exited = asyncio.Event()
		self._apply(Event.START)

		logger.info(f"Starting interpreter: {' '.join(self.command_line)}")

		try:
			process = await self._spawn(
				*self.command_line,
				stdin = asyncio.subprocess.PIPE,
				stdout = asyncio.subprocess.PIPE,
				stderr = asyncio.subprocess.PIPE
			)

		except OSError as exc:
			self._apply(Event.SPAWN_FAILED)
			logger.error(f"Failed to start interpreter: {exc}")
			raise tidal_bridge.errors.InterpreterError(
				f"Failed to start {self._ghci_path!r}: {exc}. Make sure ghci is in PATH or set GHCI_PATH"
			) from exc

		if self._shutting_down():
			logger.info("Shutdown requested while spawning, discarding new interpreter")
			await self._discard(process)
			raise tidal_bridge.errors.InterpreterError("Interpreter has been shut down")

		self._process = process
		self._spawn_count += 1

		self._watchers = [
			asyncio.create_task(self._watch_exit(process, generation, self._exited)),
			asyncio.create_task(self._watch_stdin(process.stdin, generation)),
			asyncio.create_task(self._pump_stdout(process.stdout, self._ready)),
			asyncio.create_task(self._pump_stderr(process.stderr)),
		]

		await self._await_ready(process)

	async def _await_ready (self, process: typing.Any) -> None:

		"""Race the readiness marker against the timeout and an early exit."""

		ready_task = asyncio.create_task(self._ready.wait())
		exited_task = asyncio.create_task(self._exited.wait())

		try:
			await asyncio.wait(
				{ready_task, exited_task},
				timeout = self._ready_timeout,
				return_when = asyncio.FIRST_COMPLETED
			)

		finally:
			for task in (ready_task, exited_task):
				task.cancel()

		self._drain_events()

		if self._shutting_down():
			raise tidal_bridge.errors.InterpreterError("Interpreter has been shut down")

		if self._state is not State.STARTING:
			raise tidal_bridge.errors.InterpreterError(
				f"Interpreter exited during startup (code {process.returncode})"
			)

		if self._ready.is_set():
			self._apply(Event.READY_MARKER)
			logger.info("Interpreter initialized and connected to SuperDirt")

		else:
			self._apply(Event.READY_TIMEOUT)
			logger.warning(f"Interpreter initialization timeout reached after {self._ready_timeout}s, continuing")

	# ------------------------------------------------------------------
	# Writing
	# ------------------------------------------------------------------

	async def _write (self, command: str) -> None:

		process = self._process
		stdin = process.stdin if process is not None else None

		if stdin is None:
			raise tidal_bridge.errors.SinkError("GHCi stdin not available after reconnection")

		logger.debug(f"[ghci send] {command}")

		try:
			stdin.write(_frame(command).encode("utf-8"))
			await stdin.drain()

		except (OSError, RuntimeError) as exc:
			logger.error(f"Interpreter write failed: {exc}")
			self._apply(Event.WRITE_FAILED)
			raise tidal_bridge.errors.SinkError(f"Failed to write to GHCi: {exc}") from exc

	# ------------------------------------------------------------------
	# Health and events
	# ------------------------------------------------------------------

	def _shutting_down (self) -> bool:

		return self._state in (State.SHUTTING_DOWN, State.STOPPED)

	def _check_health (self) -> bool:

		self._drain_events()

		if self._state is not State.READY:
			return False

		process = self._process

		if process is None or process.stdin is None or process.returncode is not None:
			self._apply(Event.PROCESS_EXITED)
			return False

		if process.stdin.is_closing():
			self._apply(Event.STDIN_CLOSED)
			return False

		return True

	def _post (self, generation: int, event: Event, detail: str = "") -> None:

		self._events.put_nowait((generation, event, detail))

	def _drain_events (self) -> None:

		while True:

			try:
				generation, event, detail = self._events.get_nowait()
			except asyncio.QueueEmpty:
				return

			if generation != self._generation:
				logger.debug(f"Ignoring {event.name} from replaced interpreter (generation {generation})")
				continue

			self._apply(event, detail)

	def _apply (self, event: Event, detail: str = "") -> None:

		previous = self._state
		self._state = transition(previous, event)

		if self._state is previous:
			return

		message = f"Interpreter {previous.value} -> {self._state.value} ({event.value}{': ' + detail if detail else ''})"

		if self._state is State.DEGRADED:
			logger.warning(message)
		else:
			logger.info(message)

	# ------------------------------------------------------------------
	# Watchers
	# ------------------------------------------------------------------

	async def _watch_exit (self, process: typing.Any, generation: int, exited: asyncio.Event) -> None:

		returncode = await process.wait()
		exited.set()
		self._post(generation, Event.PROCESS_EXITED, f"code {returncode}")

	async def _watch_stdin (self, stdin: typing.Any, generation: int) -> None:

		if stdin is None:
			return

		try:
			await stdin.wait_closed()

		except asyncio.CancelledError:
			raise

		except Exception as exc:
			self._post(generation, Event.STDIN_ERROR, str(exc))
			return

		self._post(generation, Event.STDIN_CLOSED)

	async def _pump_stdout (self, stdout: typing.Any, ready: asyncio.Event) -> None:

		"""Keep the stdout pipe drained, setting ``ready`` when a marker appears.

		The tail of the previous chunk is kept so markers split across reads
		are still found.
		"""

		if stdout is None:
			return

		keep = max((len(marker) for marker in self._ready_markers), default=1) - 1
		tail = ""

		while True:

			chunk = await stdout.read(_READ_CHUNK)

			if not chunk:
				return

			text = chunk.decode("utf-8", errors="replace")
			logger.debug(f"[ghci] {text.rstrip()}")

			if ready.is_set():
				continue

			window = tail + text

			if any(marker in window for marker in self._ready_markers):
				ready.set()

			tail = window[-keep:] if keep else ""

	async def _pump_stderr (self, stderr: typing.Any) -> None:

		if stderr is None:
			return

		while True:

			line = await stderr.readline()

			if not line:
				return

			logger.debug(f"[ghci stderr] {line.decode('utf-8', errors='replace').rstrip()}")

	# ------------------------------------------------------------------
	# Teardown
	# ------------------------------------------------------------------

	async def _teardown (self) -> None:

		"""Discard the current process handle, killing it if it is still running."""

		process = self._process
		self._process = None

		if process is not None:
			logger.info("Cleaning up old interpreter process")
			await self._kill(process)

		await self._cancel_watchers()

	async def _discard (self, process: typing.Any) -> None:

		"""Close stdin, allow the grace period for a clean exit, then kill."""

		stdin = process.stdin

		if stdin is not None and not stdin.is_closing():
			stdin.close()

		if process.returncode is None and self._shutdown_grace > 0:
			with contextlib.suppress(asyncio.TimeoutError):
				await asyncio.wait_for(process.wait(), timeout=self._shutdown_grace)

		await self._kill(process)

	async def _kill (self, process: typing.Any) -> None:

		if process.returncode is not None:
			return

		with contextlib.suppress(ProcessLookupError):
			process.kill()

		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(process.wait(), timeout=5.0)

	async def _cancel_watchers (self) -> None:

		watchers, self._watchers = self._watchers, []

		for task in watchers:
			task.cancel()

		if watchers:
			await asyncio.gather(*watchers, return_exceptions=True)


def _frame (command: str) -> str:

	"""Terminate a command for GHCi, wrapping multi-line input in ``:{`` / ``:}``."""

	if "\n" in command.strip():
		return f":{{\n{command.strip()}\n:}}\n"

	return command + "\n"
