import asyncio
import typing

import pytest

import tidal_bridge.channel_state
import tidal_bridge.dispatcher
import tidal_bridge.history


class FakeClock:

	"""Manually advanced time source."""

	def __init__ (self, now: float = 1_700_000_000.0) -> None:

		self.now = now

	def __call__ (self) -> float:

		return self.now

	def advance (self, seconds: float) -> None:

		self.now += seconds


class RecordingSink:

	"""Sink stub that keeps every submitted command, or fails on demand."""

	name = "recording"

	def __init__ (self) -> None:

		self.commands: typing.List[str] = []
		self.fail_with: typing.Optional[Exception] = None
		self.delays: typing.Dict[str, float] = {}

	async def submit (self, command: str) -> None:

		if command in self.delays:
			await asyncio.sleep(self.delays[command])

		if self.fail_with is not None:
			raise self.fail_with

		self.commands.append(command)


class FakeStdin:

	"""Stand-in for the ``StreamWriter`` attached to a child's stdin."""

	def __init__ (self, log: typing.List[str], on_close: typing.Optional[typing.Callable[[], None]] = None) -> None:

		self.written: typing.List[str] = []
		self.fail_with: typing.Optional[Exception] = None
		self.closed = False
		self._log = log
		self._on_close = on_close
		self._close_error: typing.Optional[Exception] = None
		self._closed_event = asyncio.Event()

	def write (self, data: bytes) -> None:

		self.written.append(data.decode("utf-8"))

	async def drain (self) -> None:

		if self.fail_with is not None:
			raise self.fail_with

	def is_closing (self) -> bool:

		return self.closed

	def close (self) -> None:

		"""Explicit close from the parent side."""

		self._log.append("stdin_close")
		self.connection_lost()

		if self._on_close is not None:
			self._on_close()

	def connection_lost (self, exc: typing.Optional[Exception] = None) -> None:

		"""The pipe went away, optionally with an error."""

		if self.closed:
			return

		self.closed = True
		self._close_error = exc
		self._closed_event.set()

	async def wait_closed (self) -> None:

		await self._closed_event.wait()

		if self._close_error is not None:
			raise self._close_error


class FakeProcess:

	"""Stand-in for ``asyncio.subprocess.Process`` with real stream readers."""

	def __init__ (self, pid: int, exits_on_eof: bool = False) -> None:

		self.pid = pid
		self.log: typing.List[str] = []
		self.stdin = FakeStdin(self.log, on_close=self._stdin_closed if exits_on_eof else None)
		self.stdout = asyncio.StreamReader()
		self.stderr = asyncio.StreamReader()
		self.returncode: typing.Optional[int] = None
		self._exited = asyncio.Event()

	def announce (self, text: str = "Connected to SuperDirt\n") -> None:

		"""Emit text on stdout as the interpreter would."""

		self.stdout.feed_data(text.encode("utf-8"))

	def exit (self, code: int = 0) -> None:

		if self.returncode is not None:
			return

		self.returncode = code
		self.stdin.connection_lost()
		self.stdout.feed_eof()
		self.stderr.feed_eof()
		self._exited.set()

	def kill (self) -> None:

		self.log.append("kill")
		self.exit(-9)

	async def wait (self) -> int:

		await self._exited.wait()
		return typing.cast(int, self.returncode)

	def _stdin_closed (self) -> None:

		self.exit(0)


class FakeSpawner:

	"""Replacement for ``asyncio.create_subprocess_exec`` that records launches.

	Attributes:
		auto_ready: Print the SuperDirt marker as soon as a process starts.
		exits_on_eof: Processes exit by themselves when stdin is closed.
		exit_code: If set, every process exits immediately with this code.
		fail: If set, raised instead of launching.
		delay: Seconds to wait before the process appears.
	"""

	def __init__ (self) -> None:

		self.calls: typing.List[typing.Tuple[typing.Any, ...]] = []
		self.processes: typing.List[FakeProcess] = []
		self.auto_ready = True
		self.exits_on_eof = False
		self.exit_code: typing.Optional[int] = None
		self.fail: typing.Optional[Exception] = None
		self.delay = 0.0

	async def __call__ (self, *args: typing.Any, **kwargs: typing.Any) -> FakeProcess:

		self.calls.append(args)

		if self.fail is not None:
			raise self.fail

		if self.delay:
			await asyncio.sleep(self.delay)

		process = FakeProcess(pid=1000 + len(self.processes), exits_on_eof=self.exits_on_eof)
		self.processes.append(process)

		if self.exit_code is not None:
			process.exit(self.exit_code)

		elif self.auto_ready:
			process.announce("GHCi, version 9.4.8\nConnected to SuperDirt\ntidal> ")

		return process

	@property
	def latest (self) -> FakeProcess:

		return self.processes[-1]


@pytest.fixture
def clock () -> FakeClock:

	return FakeClock()


@pytest.fixture
def sink () -> RecordingSink:

	return RecordingSink()


@pytest.fixture
def spawner () -> FakeSpawner:

	return FakeSpawner()


@pytest.fixture
def dispatcher (sink: RecordingSink, clock: FakeClock) -> tidal_bridge.dispatcher.RequestDispatcher:

	"""A dispatcher wired to a recording sink and a manual clock."""

	return tidal_bridge.dispatcher.RequestDispatcher(
		tidal_bridge.channel_state.ChannelStore(clock=clock),
		tidal_bridge.history.HistoryLog(clock=clock),
		sink,
		clock = clock
	)
