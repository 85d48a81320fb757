"""Startup configuration for the bridge.

Values are resolved once, in increasing priority: built-in defaults, an
optional YAML file, then environment variables.  The result is an immutable
``BridgeConfig`` that is handed to the session and never changed.

Example ``tidal-bridge.yaml``::

	mode: ghci
	tidal_file: ~/live/tidal-mcp-output.tidal
	ghci:
	  path: /usr/local/bin/ghci
	  boot_script: ~/live/BootTidal.hs
	  ready_timeout: 15
	history:
	  capacity: 500
	transport: websocket
	websocket:
	  port: 8080

Environment variables: ``TIDAL_FILE``, ``TIDAL_USE_GHCI``, ``TIDAL_BOOT_PATH``,
``TIDAL_LOG_FILE``, ``GHCI_PATH``, ``TIDAL_TRANSPORT``, ``TIDAL_WS_HOST`` and
``TIDAL_WS_PORT``.
"""

import dataclasses
import logging
import os
import pathlib
import typing

import yaml

import tidal_bridge.constants
import tidal_bridge.errors


logger = logging.getLogger(__name__)

MODES = ("file", "ghci")
TRANSPORTS = ("stdio", "websocket")


@dataclasses.dataclass(frozen=True)
class BridgeConfig:

	"""Everything the session needs to know at startup.

	Attributes:
		mode: ``file`` writes each command to ``tidal_file``; ``ghci`` drives
			an interpreter process directly.
		tidal_file: Output file for file mode.
		ghci_path: Interpreter executable for ghci mode.
		boot_script: Script passed to the interpreter with ``-ghci-script``.
		log_file: Session log path; ``None`` places it next to ``tidal_file``.
		ready_markers: Interpreter output that signals a completed startup.
		ready_timeout: Seconds to wait for a ready marker before proceeding.
		shutdown_grace: Seconds to let the interpreter exit after stdin closes.
		history_capacity: Maximum number of history entries kept.
		transport: ``stdio`` (MCP) or ``websocket`` (JSON-RPC).
		ws_host: WebSocket bind address.
		ws_port: WebSocket port.
		osc_enabled: Start the OSC control surface.
		osc_receive_port: UDP port for incoming OSC control messages.
		osc_send_port: UDP port OSC feedback is sent to.
		osc_send_host: Host OSC feedback is sent to.
	"""

	mode:             str = "file"
	tidal_file:       str = tidal_bridge.constants.DEFAULT_TIDAL_FILENAME
	ghci_path:        str = tidal_bridge.constants.DEFAULT_GHCI_PATH
	boot_script:      str = tidal_bridge.constants.DEFAULT_BOOT_SCRIPT
	log_file:         typing.Optional[str] = None
	ready_markers:    typing.Tuple[str, ...] = tidal_bridge.constants.DEFAULT_READY_MARKERS
	ready_timeout:    float = tidal_bridge.constants.DEFAULT_READY_TIMEOUT
	shutdown_grace:   float = tidal_bridge.constants.DEFAULT_SHUTDOWN_GRACE
	history_capacity: int = tidal_bridge.constants.DEFAULT_HISTORY_CAPACITY
	transport:        str = "stdio"
	ws_host:          str = tidal_bridge.constants.DEFAULT_WS_HOST
	ws_port:          int = tidal_bridge.constants.DEFAULT_WS_PORT
	osc_enabled:      bool = False
	osc_receive_port: int = tidal_bridge.constants.DEFAULT_OSC_RECEIVE_PORT
	osc_send_port:    int = tidal_bridge.constants.DEFAULT_OSC_SEND_PORT
	osc_send_host:    str = tidal_bridge.constants.DEFAULT_OSC_SEND_HOST

	@property
	def use_ghci (self) -> bool:

		return self.mode == "ghci"

	@property
	def session_log_path (self) -> pathlib.Path:

		"""The session log path, defaulting to the tidal file's directory."""

		if self.log_file:
			return pathlib.Path(self.log_file).expanduser()

		return pathlib.Path(self.tidal_file).expanduser().parent / tidal_bridge.constants.DEFAULT_LOG_FILENAME

	def validate (self) -> "BridgeConfig":

		"""Return self, or raise ``ConfigError`` describing the first invalid value."""

		for name in ("mode", "transport", "tidal_file", "ghci_path", "boot_script", "ws_host", "osc_send_host"):
			_check_type(name, getattr(self, name), str, "a string")

		if self.log_file is not None:
			_check_type("log_file", self.log_file, str, "a string")

		for name in ("ready_timeout", "shutdown_grace"):
			_check_type(name, getattr(self, name), (int, float), "a number")

		for name in ("history_capacity", "ws_port", "osc_receive_port", "osc_send_port"):
			_check_type(name, getattr(self, name), int, "an integer")

		_check_type("osc_enabled", self.osc_enabled, bool, "true or false")

		if not isinstance(self.ready_markers, tuple) or not all(isinstance(marker, str) and marker for marker in self.ready_markers):
			raise tidal_bridge.errors.ConfigError(f"ready_markers must be non-empty strings, got {self.ready_markers!r}")

		if self.mode not in MODES:
			raise tidal_bridge.errors.ConfigError(f"Unknown mode {self.mode!r}. Expected one of: {', '.join(MODES)}")

		if self.transport not in TRANSPORTS:
			raise tidal_bridge.errors.ConfigError(f"Unknown transport {self.transport!r}. Expected one of: {', '.join(TRANSPORTS)}")

		if self.ready_timeout <= 0:
			raise tidal_bridge.errors.ConfigError(f"ready_timeout must be positive, got {self.ready_timeout}")

		if self.shutdown_grace < 0:
			raise tidal_bridge.errors.ConfigError(f"shutdown_grace must not be negative, got {self.shutdown_grace}")

		if self.history_capacity < 1:
			raise tidal_bridge.errors.ConfigError(f"history capacity must be at least 1, got {self.history_capacity}")

		if not self.ready_markers:
			raise tidal_bridge.errors.ConfigError("At least one ready marker is required")

		for name in ("ws_port", "osc_receive_port", "osc_send_port"):
			port = getattr(self, name)
			if not 0 <= port <= 65535:
				raise tidal_bridge.errors.ConfigError(f"{name} out of range: {port}")

		return self


def load_config (
	config_path: typing.Optional[str] = None,
	environ: typing.Optional[typing.Mapping[str, str]] = None,
	**overrides: typing.Any
) -> BridgeConfig:

	"""Build the configuration from defaults, a YAML file and the environment.

	Parameters:
		config_path: YAML file to read. A missing file logs a warning and is
			treated as empty; ``None`` skips the file entirely.
		environ: Environment mapping (defaults to ``os.environ``).
		**overrides: Field values that win over everything else, e.g. from
			command-line flags. ``None`` values are ignored.

	Raises:
		ConfigError: The file is not valid YAML or a value is invalid.
	"""

	if environ is None:
		environ = os.environ

	values: typing.Dict[str, typing.Any] = {
		"tidal_file": os.path.join(os.getcwd(), tidal_bridge.constants.DEFAULT_TIDAL_FILENAME),
	}

	if config_path is not None:
		values.update(_flatten(_read_yaml(config_path)))

	values.update(_from_environ(environ))
	values.update({key: value for key, value in overrides.items() if value is not None})

	known = {field.name for field in dataclasses.fields(BridgeConfig)}
	unknown = sorted(set(values) - known)

	if unknown:
		raise tidal_bridge.errors.ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

	if "ready_markers" in values:
		values["ready_markers"] = _marker_tuple(values["ready_markers"])

	try:
		config = BridgeConfig(**values)
	except TypeError as exc:
		raise tidal_bridge.errors.ConfigError(str(exc)) from exc

	return config.validate()


def _marker_tuple (value: typing.Any) -> typing.Tuple[str, ...]:

	"""Accept a single marker or a list of markers."""

	if isinstance(value, str):
		return (value,)

	if isinstance(value, (list, tuple)):
		return tuple(value)

	raise tidal_bridge.errors.ConfigError(f"ready_markers must be a string or a list of strings, got {value!r}")


def _check_type (name: str, value: typing.Any, types: typing.Union[type, typing.Tuple[type, ...]], expected: str) -> None:

	# bool is an int subclass, but "port: true" is not a port.
	if (isinstance(value, bool) and types is not bool) or not isinstance(value, types):
		raise tidal_bridge.errors.ConfigError(f"{name} must be {expected}, got {value!r}")


def _read_yaml (config_path: str) -> typing.Dict[str, typing.Any]:

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	try:
		with open(config_path, "r", encoding="utf-8") as f:
			data = yaml.safe_load(f)
	except yaml.YAMLError as exc:
		raise tidal_bridge.errors.ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

	if data is None:
		return {}

	if not isinstance(data, dict):
		raise tidal_bridge.errors.ConfigError(f"{config_path} must contain a mapping at the top level")

	return data


def _flatten (data: typing.Mapping[str, typing.Any]) -> typing.Dict[str, typing.Any]:

	"""Map the nested YAML layout onto ``BridgeConfig`` field names."""

	values: typing.Dict[str, typing.Any] = {}
	sections = {
		"ghci":      {"path": "ghci_path", "boot_script": "boot_script", "ready_markers": "ready_markers",
		              "ready_timeout": "ready_timeout", "shutdown_grace": "shutdown_grace"},
		"history":   {"capacity": "history_capacity"},
		"websocket": {"host": "ws_host", "port": "ws_port"},
		"osc":       {"enabled": "osc_enabled", "receive_port": "osc_receive_port",
		              "send_port": "osc_send_port", "send_host": "osc_send_host"},
	}

	for key, value in data.items():

		if key in sections:

			if not isinstance(value, dict):
				raise tidal_bridge.errors.ConfigError(f"Config section {key!r} must be a mapping")

			for sub_key, sub_value in value.items():
				if sub_key not in sections[key]:
					raise tidal_bridge.errors.ConfigError(f"Unknown configuration key: {key}.{sub_key}")
				values[sections[key][sub_key]] = sub_value

		else:
			values[key] = value

	return values


def _from_environ (environ: typing.Mapping[str, str]) -> typing.Dict[str, typing.Any]:

	values: typing.Dict[str, typing.Any] = {}

	if environ.get("TIDAL_FILE"):
		values["tidal_file"] = environ["TIDAL_FILE"]

	if "TIDAL_USE_GHCI" in environ:
		values["mode"] = "ghci" if environ["TIDAL_USE_GHCI"].strip().lower() in ("true", "1") else "file"

	if environ.get("TIDAL_BOOT_PATH"):
		values["boot_script"] = environ["TIDAL_BOOT_PATH"]

	if environ.get("TIDAL_LOG_FILE"):
		values["log_file"] = environ["TIDAL_LOG_FILE"]

	if environ.get("GHCI_PATH"):
		values["ghci_path"] = environ["GHCI_PATH"]

	if environ.get("TIDAL_TRANSPORT"):
		values["transport"] = environ["TIDAL_TRANSPORT"]

	if environ.get("TIDAL_WS_HOST"):
		values["ws_host"] = environ["TIDAL_WS_HOST"]

	if environ.get("TIDAL_WS_PORT"):
		try:
			values["ws_port"] = int(environ["TIDAL_WS_PORT"])
		except ValueError as exc:
			raise tidal_bridge.errors.ConfigError(f"TIDAL_WS_PORT must be an integer, got {environ['TIDAL_WS_PORT']!r}") from exc

	return values
