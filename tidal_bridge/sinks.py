"""Destinations for composed commands.

``FileSink`` rewrites a ``.tidal`` file for an editor-side watcher to pick up;
``ProcessSink`` writes straight into a managed GHCi process.
"""

import asyncio
import datetime
import logging
import pathlib
import typing

import tidal_bridge.constants
import tidal_bridge.errors
import tidal_bridge.interpreter


logger = logging.getLogger(__name__)


def iso_timestamp (now: typing.Optional[datetime.datetime] = None) -> str:

	"""Return a UTC ISO-8601 timestamp with millisecond precision, e.g. ``2024-05-01T12:00:00.000Z``."""

	if now is None:
		now = datetime.datetime.now(datetime.timezone.utc)

	return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class OutputSink (typing.Protocol):

	"""Anything that can deliver a single command to the Tidal runtime."""

	name: str

	async def submit (self, command: str) -> None: ...


class FileSink:

	"""Replace a file's whole content with a generated header and one command.

	Every call discards the previous content, so a watcher sees exactly one
	command per change, including repeats of the same command.
	"""

	name = "file"

	def __init__ (self, path: typing.Union[str, pathlib.Path]) -> None:

		self.path = pathlib.Path(path)

	def render (self, command: str, now: typing.Optional[datetime.datetime] = None) -> str:

		return (
			f"-- {tidal_bridge.constants.FILE_HEADER_TITLE}\n"
			f"-- Auto-generated at {iso_timestamp(now)}\n"
			f"\n"
			f"{command}\n"
		)

	async def submit (self, command: str) -> None:

		"""Write the command, raising ``SinkError`` on any filesystem failure."""

		content = self.render(command)

		logger.debug(f"Writing to {self.path}: {command}")

		try:
			await asyncio.to_thread(self.path.write_text, content, encoding="utf-8")
		except OSError as exc:
			raise tidal_bridge.errors.SinkError(f"Failed to write {self.path}: {exc}") from exc

		logger.debug(f"Wrote {self.path}")


class ProcessSink:

	"""Deliver commands through the interpreter manager's serialized write path."""

	name = "ghci"

	def __init__ (self, manager: tidal_bridge.interpreter.InterpreterManager) -> None:

		self.manager = manager

	async def submit (self, command: str) -> None:

		await self.manager.submit(command)
