"""Human-readable, append-only record of a bridge session.

The log is a side channel: it is never read back, and a failure to write it is
reported on the error log without failing the operation being recorded.
"""

import logging
import pathlib
import typing

import tidal_bridge.sinks

if typing.TYPE_CHECKING:
	from tidal_bridge.dispatcher import CommandRecord


logger = logging.getLogger(__name__)

_RULE = "=" * 80


class SessionLog:

	"""Write a header when a session starts and one block per operation after that."""

	def __init__ (self, path: typing.Union[str, pathlib.Path]) -> None:

		self.path = pathlib.Path(path)

	def start (self, mode: str) -> None:

		"""Truncate the log and write the session header."""

		header = (
			"TidalCycles MCP Server - Session Log\n"
			f"Started: {tidal_bridge.sinks.iso_timestamp()}\n"
			f"Mode: {mode}\n"
			f"Log File: {self.path}\n"
			f"{_RULE}\n\n"
		)

		try:
			self.path.write_text(header, encoding="utf-8")
			logger.info(f"Session log: {self.path}")
		except OSError as exc:
			logger.error(f"Failed to create log file: {exc}")

	def record (self, record: "CommandRecord") -> None:

		"""Append the block for one composed command. Suitable as an event listener."""

		if record.operation == "eval":
			block = self.format_evaluation(f"Evaluate pattern on {record.channel}", record.command)
		else:
			block = self.format_action(record.operation.upper(), record.description)

		self._append(block)

	def format_evaluation (self, request: str, command: str) -> str:

		return f"{tidal_bridge.sinks.iso_timestamp()}\nREQUEST: {request}\nRESPONSE: {command}\n---\n\n"

	def format_action (self, action: str, details: typing.Optional[str] = None) -> str:

		block = f"{tidal_bridge.sinks.iso_timestamp()}\nACTION: {action}"

		if details:
			block += f"\nDETAILS: {details}"

		return block + "\n---\n\n"

	def _append (self, block: str) -> None:

		try:
			with self.path.open("a", encoding="utf-8") as handle:
				handle.write(block)
		except OSError as exc:
			logger.error(f"Failed to write to log file: {exc}")
