import os
import pathlib

import pytest

import tidal_bridge.__main__
import tidal_bridge.config
import tidal_bridge.errors


def test_defaults_without_file_or_environment () -> None:

	"""With nothing configured the bridge writes tidal-mcp-output.tidal in the working directory."""

	config = tidal_bridge.config.load_config(environ={})

	assert config.mode == "file"
	assert config.use_ghci is False
	assert config.transport == "stdio"
	assert config.tidal_file == os.path.join(os.getcwd(), "tidal-mcp-output.tidal")
	assert config.session_log_path == pathlib.Path(os.getcwd()) / "tidal-mcp-session.log"
	assert config.ghci_path == "ghci"
	assert config.boot_script == "BootTidal.hs"
	assert config.ready_markers == ("Connected to SuperDirt", "tidal>")
	assert config.ready_timeout == 10.0
	assert config.history_capacity == 1000
	assert config.ws_port == 8080
	assert config.osc_enabled is False


def test_yaml_sections_are_flattened (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "bridge.yaml"
	path.write_text(
		"mode: ghci\n"
		"tidal_file: /tmp/live.tidal\n"
		"ghci:\n"
		"  path: /opt/ghc/bin/ghci\n"
		"  ready_markers: [\"tidal>\"]\n"
		"  ready_timeout: 2.5\n"
		"history:\n"
		"  capacity: 50\n"
		"websocket:\n"
		"  port: 9000\n"
		"osc:\n"
		"  enabled: true\n"
		"  receive_port: 7000\n",
		encoding = "utf-8"
	)

	config = tidal_bridge.config.load_config(str(path), environ={})

	assert config.use_ghci is True
	assert config.tidal_file == "/tmp/live.tidal"
	assert config.ghci_path == "/opt/ghc/bin/ghci"
	assert config.ready_markers == ("tidal>",)
	assert config.ready_timeout == 2.5
	assert config.history_capacity == 50
	assert config.ws_port == 9000
	assert config.osc_enabled is True
	assert config.osc_receive_port == 7000


def test_environment_overrides_yaml (tmp_path: pathlib.Path) -> None:

	path = tmp_path / "bridge.yaml"
	path.write_text("mode: file\ntidal_file: /tmp/from-yaml.tidal\n", encoding="utf-8")

	environ = {
		"TIDAL_FILE": "/tmp/from-env.tidal",
		"TIDAL_USE_GHCI": "true",
		"TIDAL_BOOT_PATH": "/home/me/BootTidal.hs",
		"TIDAL_LOG_FILE": "/tmp/session.log",
		"GHCI_PATH": "/usr/bin/ghci",
		"TIDAL_TRANSPORT": "websocket",
		"TIDAL_WS_HOST": "0.0.0.0",
		"TIDAL_WS_PORT": "9999",
	}

	config = tidal_bridge.config.load_config(str(path), environ=environ)

	assert config.tidal_file == "/tmp/from-env.tidal"
	assert config.mode == "ghci"
	assert config.boot_script == "/home/me/BootTidal.hs"
	assert config.session_log_path == pathlib.Path("/tmp/session.log")
	assert config.ghci_path == "/usr/bin/ghci"
	assert config.transport == "websocket"
	assert config.ws_host == "0.0.0.0"
	assert config.ws_port == 9999


@pytest.mark.parametrize("value, mode", [("1", "ghci"), ("TRUE", "ghci"), ("false", "file"), ("yes", "file")])
def test_use_ghci_flag (value: str, mode: str) -> None:

	config = tidal_bridge.config.load_config(environ={"TIDAL_USE_GHCI": value})

	assert config.mode == mode


def test_overrides_win_and_none_is_ignored () -> None:

	config = tidal_bridge.config.load_config(
		environ = {"TIDAL_TRANSPORT": "websocket"},
		transport = "stdio",
		mode = None
	)

	assert config.transport == "stdio"
	assert config.mode == "file"


def test_missing_file_falls_back_to_defaults (tmp_path: pathlib.Path) -> None:

	config = tidal_bridge.config.load_config(str(tmp_path / "absent.yaml"), environ={})

	assert config.mode == "file"


@pytest.mark.parametrize("content, message", [
	("mode: [unclosed\n",          "Invalid YAML"),
	("- just\n- a list\n",         "mapping"),
	("mode: turbo\n",              "Unknown mode"),
	("transport: carrier-pigeon\n", "Unknown transport"),
	("colour: blue\n",             "Unknown configuration keys: colour"),
	("ghci:\n  flavour: x\n",      "ghci.flavour"),
	("history: 5\n",               "must be a mapping"),
	("history:\n  capacity: 0\n",  "capacity"),
	("ghci:\n  ready_timeout: 0\n", "ready_timeout"),
	("websocket:\n  port: 70000\n", "ws_port"),
])
def test_invalid_configuration (tmp_path: pathlib.Path, content: str, message: str) -> None:

	"""Bad files and values are reported as ConfigError with a useful message."""

	path = tmp_path / "bridge.yaml"
	path.write_text(content, encoding="utf-8")

	with pytest.raises(tidal_bridge.errors.ConfigError, match=message):
		tidal_bridge.config.load_config(str(path), environ={})


def test_single_ready_marker_is_kept_whole (tmp_path: pathlib.Path) -> None:

	"""A scalar marker is one marker, not a sequence of characters."""

	path = tmp_path / "bridge.yaml"
	path.write_text("ghci:\n  ready_markers: tidal>\n", encoding="utf-8")

	config = tidal_bridge.config.load_config(str(path), environ={})

	assert config.ready_markers == ("tidal>",)


@pytest.mark.parametrize("content, message", [
	("ghci:\n  ready_markers: 5\n",          "ready_markers must be a string or a list"),
	("ghci:\n  ready_markers: [\"\"]\n",     "ready_markers must be non-empty strings"),
	("ghci:\n  ready_markers: [tidal>, 3]\n", "ready_markers must be non-empty strings"),
	("ghci:\n  ready_timeout: soon\n",        "ready_timeout must be a number"),
	("ghci:\n  shutdown_grace: [1]\n",        "shutdown_grace must be a number"),
	("ghci:\n  path: 42\n",                   "ghci_path must be a string"),
	("websocket:\n  port: \"80\"\n",          "ws_port must be an integer"),
	("websocket:\n  port: true\n",            "ws_port must be an integer"),
	("history:\n  capacity: 1.5\n",           "history_capacity must be an integer"),
	("osc:\n  enabled: \"yes\"\n",            "osc_enabled must be true or false"),
	("mode: 3\n",                             "mode must be a string"),
])
def test_wrongly_typed_values_are_config_errors (tmp_path: pathlib.Path, content: str, message: str) -> None:

	"""Values of the wrong type are reported as ConfigError, not TypeError."""

	path = tmp_path / "bridge.yaml"
	path.write_text(content, encoding="utf-8")

	with pytest.raises(tidal_bridge.errors.ConfigError, match=message):
		tidal_bridge.config.load_config(str(path), environ={})


def test_wrongly_typed_yaml_exits_with_status_2 (tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:

	path = tmp_path / "bridge.yaml"
	path.write_text("ghci:\n  ready_timeout: soon\n", encoding="utf-8")

	for name in ("TIDAL_WS_PORT", "TIDAL_USE_GHCI", "TIDAL_TRANSPORT"):
		monkeypatch.delenv(name, raising=False)

	with pytest.raises(SystemExit) as excinfo:
		tidal_bridge.__main__.main(["--config", str(path)])

	assert excinfo.value.code == 2


def test_bad_port_in_environment () -> None:

	with pytest.raises(tidal_bridge.errors.ConfigError, match="TIDAL_WS_PORT"):
		tidal_bridge.config.load_config(environ={"TIDAL_WS_PORT": "eighty"})
