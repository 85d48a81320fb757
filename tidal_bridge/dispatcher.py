"""Named operations that turn tool calls into Tidal commands.

Each mutating operation runs the same sequence under one lock:

1. validate arguments (nothing changes if this fails),
2. compose the command text,
3. update the channel store (and, for evaluations, the history),
4. notify ``command`` listeners and submit to the sink,
5. return a short confirmation.

State is updated before the sink confirms the write.  If the write fails the
error reaches the caller and the touched channels are flagged ``stale`` rather
than rolled back, so ``get_state`` can say which records are unconfirmed.

The lock makes concurrent callers strictly ordered: state changes, history
appends and sink writes happen in the order the operations were issued.
"""

import asyncio
import dataclasses
import logging
import time
import typing

import tidal_bridge.channel_state
import tidal_bridge.constants
import tidal_bridge.errors
import tidal_bridge.event_emitter
import tidal_bridge.history
import tidal_bridge.sinks


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CommandRecord:

	"""A command composed by the dispatcher, as seen by ``command`` listeners.

	Attributes:
		operation: ``eval``, ``hush``, ``silence``, ``solo`` or ``unsolo``.
		command: The exact text handed to the sink.
		description: Short human-readable account of the action.
		timestamp: Wall-clock time the command was composed.
		channel: Target channel, if the operation has one.
		pattern: Evaluated pattern, for ``eval`` only.
	"""

	operation:   str
	command:     str
	description: str
	timestamp:   float
	channel:     typing.Optional[str] = None
	pattern:     typing.Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CallResult:

	"""Outcome of ``RequestDispatcher.call``: always text, plus the error kind on failure."""

	text:  str
	error: typing.Optional[tidal_bridge.errors.ErrorKind] = None

	@property
	def ok (self) -> bool:

		return self.error is None


@dataclasses.dataclass(frozen=True)
class OperationInfo:

	"""Name, description and JSON schema of one inbound operation."""

	name:         str
	description:  str
	input_schema: typing.Dict[str, typing.Any]


def _channel_property (description: str) -> typing.Dict[str, typing.Any]:

	return {"type": "string", "description": description, "enum": list(tidal_bridge.constants.CHANNELS)}


OPERATIONS: typing.Tuple[OperationInfo, ...] = (
	OperationInfo(
		name = "tidal_eval",
		description = "Evaluate a TidalCycles pattern on a specific channel (d1-d9). This is the main way to make music with Tidal.",
		input_schema = {
			"type": "object",
			"properties": {
				"channel": _channel_property("The channel to evaluate on (d1, d2, ... d9)"),
				"pattern": {"type": "string", "description": "The TidalCycles pattern to evaluate (without the 'd1 $' prefix)"},
			},
			"required": ["channel", "pattern"],
		},
	),
	OperationInfo(
		name = "tidal_hush",
		description = "Stop all currently playing patterns immediately. Use this to clear everything.",
		input_schema = {"type": "object", "properties": {}},
	),
	OperationInfo(
		name = "tidal_silence",
		description = "Stop a specific channel. More graceful than hush for single channels.",
		input_schema = {
			"type": "object",
			"properties": {"channel": _channel_property("The channel to silence (d1-d9)")},
			"required": ["channel"],
		},
	),
	OperationInfo(
		name = "tidal_get_state",
		description = "Get the current state of all channels - what patterns are playing and when they started.",
		input_schema = {"type": "object", "properties": {}},
	),
	OperationInfo(
		name = "tidal_solo",
		description = "Solo a specific channel, muting all others temporarily.",
		input_schema = {
			"type": "object",
			"properties": {"channel": _channel_property("The channel to solo")},
			"required": ["channel"],
		},
	),
	OperationInfo(
		name = "tidal_unsolo",
		description = "Restore all channels after soloing.",
		input_schema = {"type": "object", "properties": {}},
	),
	OperationInfo(
		name = "tidal_get_history",
		description = "Get the history of patterns evaluated in this session.",
		input_schema = {
			"type": "object",
			"properties": {
				"limit": {"type": "number", "description": "Maximum number of history items to return (default: 10)"},
			},
		},
	),
)


class RequestDispatcher:

	"""Validate, apply and forward the seven Tidal operations."""

	def __init__ (
		self,
		channels: tidal_bridge.channel_state.ChannelStore,
		history: tidal_bridge.history.HistoryLog,
		sink: tidal_bridge.sinks.OutputSink,
		events: typing.Optional[tidal_bridge.event_emitter.EventEmitter] = None,
		clock: typing.Callable[[], float] = time.time
	) -> None:

		self.channels = channels
		self.history = history
		self.sink = sink
		self.events = events if events is not None else tidal_bridge.event_emitter.EventEmitter()
		self._clock = clock
		self._lock = asyncio.Lock()

		self._handlers: typing.Dict[str, typing.Callable[[typing.Mapping[str, typing.Any]], typing.Awaitable[str]]] = {
			"tidal_eval":        lambda args: self.evaluate(args.get("channel"), args.get("pattern")),
			"tidal_hush":        lambda args: self.hush(),
			"tidal_silence":     lambda args: self.silence(args.get("channel")),
			"tidal_get_state":   lambda args: self.get_state(),
			"tidal_solo":        lambda args: self.solo(args.get("channel")),
			"tidal_unsolo":      lambda args: self.unsolo(),
			"tidal_get_history": lambda args: self.get_history(args.get("limit")),
		}

	# ------------------------------------------------------------------
	# Boundary
	# ------------------------------------------------------------------

	async def call (self, name: str, arguments: typing.Optional[typing.Mapping[str, typing.Any]] = None) -> CallResult:

		"""Run an operation by name, converting every failure into ``Error: ...`` text."""

		arguments = arguments or {}

		logger.info(f"[tool call] {name}")
		logger.debug(f"[tool args] {dict(arguments)}")

		try:

			handler = self._handlers.get(name)

			if handler is None:
				raise tidal_bridge.errors.UnknownOperationError(f"Unknown tool: {name}")

			text = await handler(arguments)

		except tidal_bridge.errors.BridgeError as exc:
			logger.error(f"[tool error] {name}: {exc}")
			return CallResult(text=f"Error: {exc}", error=exc.kind)

		except Exception as exc:
			logger.exception(f"[tool error] {name}: unexpected failure")
			return CallResult(text=f"Error: {exc}", error=tidal_bridge.errors.ErrorKind.INTERNAL)

		logger.info(f"[tool result] {name}: success")

		return CallResult(text=text)

	# ------------------------------------------------------------------
	# Operations
	# ------------------------------------------------------------------

	async def evaluate (self, channel: typing.Any, pattern: typing.Any) -> str:

		"""Play ``pattern`` on ``channel``, replacing whatever was there."""

		channel = self._require_channel(channel)
		pattern = self._require_pattern(pattern)
		command = tidal_bridge.constants.compose_eval(channel, pattern)

		def apply () -> None:
			self.channels.set_channel(channel, pattern)
			self.history.append(channel, pattern)

		await self._perform("eval", command, apply, affected=[channel], channel=channel, pattern=pattern,
			description=f"Evaluated pattern on {channel}")

		return f"✓ Evaluated on {channel}:\n{command}\n\nPattern is now playing."

	async def hush (self) -> str:

		await self._perform("hush", tidal_bridge.constants.HUSH_COMMAND, self.channels.clear_all,
			affected=list(self.channels.names), description="Stopped all patterns")

		return "✓ All patterns stopped (hushed)."

	async def silence (self, channel: typing.Any) -> str:

		"""Stop one channel. Silencing a channel that never played is not an error."""

		channel = self._require_channel(channel)
		command = tidal_bridge.constants.SILENCE_TEMPLATE.format(channel=channel)

		await self._perform("silence", command, lambda: self.channels.clear_channel(channel),
			affected=[channel], channel=channel, description=f"Silenced channel {channel}")

		return f"✓ Silenced {channel}."

	async def solo (self, channel: typing.Any) -> str:

		"""Solo a channel in the runtime. Muting is not tracked in the channel store."""

		channel = self._require_channel(channel)
		command = tidal_bridge.constants.SOLO_TEMPLATE.format(channel=channel)

		await self._perform("solo", command, None, affected=[], channel=channel,
			description=f"Soloed channel {channel}")

		return f"✓ Soloed {channel}. All other channels are muted."

	async def unsolo (self) -> str:

		await self._perform("unsolo", tidal_bridge.constants.UNSOLO_COMMAND, None, affected=[],
			description="Restored all channels")

		return "✓ Unsolo applied. All channels restored."

	async def get_state (self) -> str:

		"""Describe every active channel, in channel order, with its age."""

		now = self._clock()
		lines = []

		for channel in self.channels.get_active():
			elapsed = int(now - channel.updated_at)
			suffix = " [unconfirmed]" if channel.stale else ""
			lines.append(f"  {channel.name}: {channel.pattern} ({elapsed}s ago){suffix}")

		text = "Active channels:\n" + "\n".join(lines) if lines else "No active patterns."

		doubtful = [channel.name for channel in self.channels.get_stale() if not channel.active]

		if doubtful:
			text += f"\n\nPossibly still playing (last command unconfirmed): {', '.join(doubtful)}"

		return text

	async def get_history (self, limit: typing.Any = None) -> str:

		"""List the most recent evaluations, newest first."""

		entries = self.history.recent(self._coerce_limit(limit))

		if not entries:
			return "No pattern history yet."

		now = self._clock()
		lines = [
			f"{index}. {entry.channel}: {entry.pattern} ({int(now - entry.timestamp)}s ago)"
			for index, entry in enumerate(entries, start=1)
		]

		return "Recent patterns:\n" + "\n".join(lines)

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	async def _perform (
		self,
		operation: str,
		command: str,
		apply: typing.Optional[typing.Callable[[], None]],
		affected: typing.List[str],
		description: str,
		channel: typing.Optional[str] = None,
		pattern: typing.Optional[str] = None
	) -> None:

		async with self._lock:

			if apply is not None:
				apply()

			record = CommandRecord(
				operation = operation,
				command = command,
				description = description,
				timestamp = self._clock(),
				channel = channel,
				pattern = pattern
			)

			logger.info(f"[{operation}] {command}")
			await self.events.emit_async("command", record)

			try:
				await self.sink.submit(command)

			except Exception:
				self.channels.mark_stale(affected)
				raise

			self.channels.mark_stale(affected, stale=False)

	def _require_channel (self, channel: typing.Any) -> str:

		if channel is None:
			raise tidal_bridge.errors.ValidationError("Missing required argument: channel")

		if not isinstance(channel, str) or channel not in self.channels:
			allowed = ", ".join(self.channels.names)
			raise tidal_bridge.errors.ValidationError(f"Unknown channel {channel!r}. Expected one of: {allowed}")

		return channel

	def _require_pattern (self, pattern: typing.Any) -> str:

		if pattern is None:
			raise tidal_bridge.errors.ValidationError("Missing required argument: pattern")

		if not isinstance(pattern, str):
			raise tidal_bridge.errors.ValidationError(f"Pattern must be a string, got {type(pattern).__name__}")

		if not pattern.strip():
			raise tidal_bridge.errors.ValidationError("Pattern must not be empty")

		return pattern

	def _coerce_limit (self, limit: typing.Any) -> typing.Optional[int]:

		if limit is None:
			return None

		if isinstance(limit, bool) or not isinstance(limit, (int, float)):
			raise tidal_bridge.errors.ValidationError(f"Limit must be a number, got {limit!r}")

		if isinstance(limit, float) and not limit.is_integer():
			raise tidal_bridge.errors.ValidationError(f"Limit must be a whole number, got {limit}")

		return int(limit)
