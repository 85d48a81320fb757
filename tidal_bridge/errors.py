"""Error types raised inside the bridge.

Every failure that reaches the request boundary is a ``BridgeError`` carrying
an ``ErrorKind``, so callers can tell a rejected request from a failed write
without parsing message text.
"""

import enum


class ErrorKind (enum.Enum):

	"""Machine-readable classification of bridge failures."""

	VALIDATION = "validation"
	UNKNOWN_OPERATION = "unknown_operation"
	SINK = "sink"
	INTERPRETER = "interpreter"
	RECONNECTING = "reconnecting"
	CONFIG = "config"
	INTERNAL = "internal"


class BridgeError (Exception):

	"""Base class for all expected operational errors."""

	kind: ErrorKind = ErrorKind.SINK

	def __init__ (self, message: str) -> None:

		super().__init__(message)
		self.message = message

	@property
	def code (self) -> str:

		"""Stable identifier for the error kind."""

		return self.kind.value

	def __str__ (self) -> str:

		return self.message


class ValidationError (BridgeError):

	"""Unknown channel, missing or malformed argument. Nothing was mutated."""

	kind = ErrorKind.VALIDATION


class UnknownOperationError (BridgeError):

	kind = ErrorKind.UNKNOWN_OPERATION


class SinkError (BridgeError):

	"""A composed command could not be delivered (file write or stdin write failed)."""

	kind = ErrorKind.SINK


class InterpreterError (BridgeError):

	"""The interpreter process could not be started or restarted."""

	kind = ErrorKind.INTERPRETER


class ReconnectingError (BridgeError):

	"""Another caller is already restarting the interpreter; retry shortly."""

	kind = ErrorKind.RECONNECTING


class ConfigError (BridgeError):

	kind = ErrorKind.CONFIG
