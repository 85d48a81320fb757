"""In-memory model of what is currently playing on each channel."""

import dataclasses
import time
import typing

import tidal_bridge.constants


@dataclasses.dataclass
class Channel:

	"""One addressable output slot.

	Attributes:
		name: Channel identifier (``d1`` … ``d9``).
		pattern: The last submitted pattern, or ``""`` when inactive.
		updated_at: Wall-clock time of the last change (``0.0`` if never set).
		active: ``True`` exactly when ``pattern`` is non-empty.
		stale: The last command touching this channel was not confirmed by
			the sink, so the runtime may disagree with this record.
	"""

	name:       str
	pattern:    str = ""
	updated_at: float = 0.0
	active:     bool = False
	stale:      bool = False


class ChannelStore:

	"""A fixed table of channels, created empty and never shrunk."""

	def __init__ (
		self,
		names: typing.Sequence[str] = tidal_bridge.constants.CHANNELS,
		clock: typing.Callable[[], float] = time.time
	) -> None:

		"""Create one inactive ``Channel`` per name.

		Parameters:
			names: Channel identifiers, in the order state queries report them.
			clock: Source of timestamps; replaceable in tests.
		"""

		self._names = tuple(names)
		self._clock = clock
		self._channels: typing.Dict[str, Channel] = {name: Channel(name=name) for name in self._names}

	@property
	def names (self) -> typing.Tuple[str, ...]:

		return self._names

	def __contains__ (self, name: object) -> bool:

		return name in self._channels

	def get (self, name: str) -> Channel:

		"""Return the record for a channel. Raises ``KeyError`` for unknown names."""

		return self._channels[name]

	def set_channel (self, name: str, pattern: str) -> None:

		"""Mark a channel as playing ``pattern`` from now on."""

		channel = self._channels[name]
		channel.pattern = pattern
		channel.active = True
		channel.updated_at = self._clock()

	def clear_channel (self, name: str) -> None:

		"""Mark a channel as silent. Clearing an inactive channel is a no-op."""

		channel = self._channels[name]

		if channel.active:
			channel.updated_at = self._clock()

		channel.pattern = ""
		channel.active = False

	def clear_all (self) -> None:

		for name in self._names:
			self.clear_channel(name)

	def get_active (self) -> typing.List[Channel]:

		"""Return active channels in identifier order, independent of update order."""

		return [self._channels[name] for name in self._names if self._channels[name].active]

	def mark_stale (self, names: typing.Iterable[str], stale: bool = True) -> None:

		for name in names:
			self._channels[name].stale = stale

	def get_stale (self) -> typing.List[Channel]:

		return [self._channels[name] for name in self._names if self._channels[name].stale]

	def snapshot (self) -> typing.List[typing.Dict[str, typing.Any]]:

		"""Return a JSON-friendly copy of every channel, for broadcasting."""

		return [dataclasses.asdict(self._channels[name]) for name in self._names]
