import pathlib

import pytest

import tidal_bridge.config
import tidal_bridge.constants
import tidal_bridge.dispatcher
import tidal_bridge.mcp_app
import tidal_bridge.session


@pytest.fixture
def session (tmp_path: pathlib.Path) -> tidal_bridge.session.BridgeSession:

	config = tidal_bridge.config.BridgeConfig(tidal_file=str(tmp_path / "out.tidal"))
	return tidal_bridge.session.BridgeSession(config)


@pytest.mark.asyncio
async def test_every_operation_is_an_mcp_tool (session) -> None:

	"""The MCP app exposes one tool per operation with the same description."""

	mcp = tidal_bridge.mcp_app.create_mcp_app(session)

	tools = {tool.name: tool for tool in await mcp.list_tools()}

	assert set(tools) == {op.name for op in tidal_bridge.dispatcher.OPERATIONS}

	for op in tidal_bridge.dispatcher.OPERATIONS:
		assert tools[op.name].description == op.description


@pytest.mark.asyncio
async def test_eval_tool_requires_channel_and_pattern (session) -> None:

	mcp = tidal_bridge.mcp_app.create_mcp_app(session)

	tools = {tool.name: tool for tool in await mcp.list_tools()}

	assert set(tools["tidal_eval"].inputSchema["required"]) == {"channel", "pattern"}
	assert "required" not in tools["tidal_get_history"].inputSchema or tools["tidal_get_history"].inputSchema["required"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["tidal_eval", "tidal_silence", "tidal_solo"])
async def test_channel_argument_lists_valid_channels (session, name: str) -> None:

	"""Clients see d1..d9 as the only accepted channel values."""

	mcp = tidal_bridge.mcp_app.create_mcp_app(session)

	tools = {tool.name: tool for tool in await mcp.list_tools()}
	channel = tools[name].inputSchema["properties"]["channel"]

	assert channel["enum"] == list(tidal_bridge.constants.CHANNELS)
	assert channel["type"] == "string"
