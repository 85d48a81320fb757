"""Named-event fan-out used to notify observers of composed commands.

Observers (the session log, OSC feedback, WebSocket broadcast) are side
channels: a failing listener is logged and skipped, never allowed to fail the
operation that emitted the event.
"""

import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""A simple event emitter supporting sync and async callbacks."""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}

	def on (self, event_name: str, callback: CallbackType) -> None:

		"""Register a callback for an event name."""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)

	def listener_count (self, event_name: str) -> int:

		return len(self._listeners.get(event_name, []))

	async def emit_async (self, event_name: str, *args: typing.Any, **kwargs: typing.Any) -> None:

		"""Call sync listeners in order, then await all async listeners together."""

		tasks: typing.List[typing.Awaitable[typing.Any]] = []

		for callback in list(self._listeners.get(event_name, [])):

			if asyncio.iscoroutinefunction(callback):
				tasks.append(callback(*args, **kwargs))

			else:
				self._call_isolated(event_name, callback, *args, **kwargs)

		if not tasks:
			return

		results = await asyncio.gather(*tasks, return_exceptions=True)

		for result in results:
			if isinstance(result, Exception):
				logger.warning(f"Listener for {event_name!r} failed: {result}")

	def _call_isolated (self, event_name: str, callback: CallbackType, *args: typing.Any, **kwargs: typing.Any) -> None:

		try:
			callback(*args, **kwargs)
		except Exception as exc:
			logger.warning(f"Listener for {event_name!r} failed: {exc}")
