"""Bounded log of evaluated patterns, newest last."""

import collections
import dataclasses
import time
import typing

import tidal_bridge.constants


@dataclasses.dataclass(frozen=True)
class HistoryEntry:

	"""An evaluated pattern and when it was submitted."""

	channel:   str
	pattern:   str
	timestamp: float


class HistoryLog:

	"""Append-only ring of ``HistoryEntry`` records.

	Once ``capacity`` entries are held, each append evicts the oldest, so
	``len(log)`` never exceeds the capacity.
	"""

	def __init__ (
		self,
		capacity: int = tidal_bridge.constants.DEFAULT_HISTORY_CAPACITY,
		clock: typing.Callable[[], float] = time.time
	) -> None:

		if capacity < 1:
			raise ValueError(f"History capacity must be at least 1, got {capacity}")

		self._entries: typing.Deque[HistoryEntry] = collections.deque(maxlen=capacity)
		self._clock = clock

	@property
	def capacity (self) -> int:

		return typing.cast(int, self._entries.maxlen)

	def __len__ (self) -> int:

		return len(self._entries)

	def append (self, channel: str, pattern: str) -> HistoryEntry:

		"""Record a pattern evaluation at the current time."""

		entry = HistoryEntry(channel=channel, pattern=pattern, timestamp=self._clock())
		self._entries.append(entry)
		return entry

	def recent (self, limit: typing.Optional[int] = None) -> typing.List[HistoryEntry]:

		"""Return up to ``limit`` entries, most recent first.

		``None`` means the default of 10; zero or negative limits return nothing.
		"""

		if limit is None:
			limit = tidal_bridge.constants.DEFAULT_HISTORY_LIMIT

		if limit <= 0:
			return []

		result: typing.List[HistoryEntry] = []

		for entry in reversed(self._entries):
			if len(result) >= limit:
				break
			result.append(entry)

		return result
