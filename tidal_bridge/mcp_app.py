"""FastMCP app factory exposing the Tidal operations as MCP tools.

The session is started in the server lifespan, so the interpreter (in ghci
mode) is launched on the same event loop that serves tool calls and is shut
down when the client disconnects or the process is interrupted.
"""

import contextlib
import typing

from mcp.server.fastmcp import FastMCP

import tidal_bridge.constants
import tidal_bridge.dispatcher
import tidal_bridge.session


ChannelName = typing.Literal[tidal_bridge.constants.CHANNELS]  # type: ignore[valid-type]


def _description (name: str) -> str:

	for op in tidal_bridge.dispatcher.OPERATIONS:
		if op.name == name:
			return op.description

	raise KeyError(name)


def create_mcp_app (session: tidal_bridge.session.BridgeSession) -> FastMCP:

	"""Create the MCP server and register one tool per dispatcher operation."""

	@contextlib.asynccontextmanager
	async def lifespan (server: FastMCP) -> typing.AsyncIterator[typing.Dict[str, typing.Any]]:
		async with session:
			yield {"session": session}

	mcp = FastMCP(tidal_bridge.constants.SERVER_NAME, lifespan=lifespan)
	dispatcher = session.dispatcher

	async def _call (name: str, arguments: typing.Dict[str, typing.Any]) -> str:
		result = await dispatcher.call(name, arguments)
		return result.text

	@mcp.tool(name="tidal_eval", description=_description("tidal_eval"))
	async def tidal_eval (channel: ChannelName, pattern: str) -> str:
		return await _call("tidal_eval", {"channel": channel, "pattern": pattern})

	@mcp.tool(name="tidal_hush", description=_description("tidal_hush"))
	async def tidal_hush () -> str:
		return await _call("tidal_hush", {})

	@mcp.tool(name="tidal_silence", description=_description("tidal_silence"))
	async def tidal_silence (channel: ChannelName) -> str:
		return await _call("tidal_silence", {"channel": channel})

	@mcp.tool(name="tidal_get_state", description=_description("tidal_get_state"))
	async def tidal_get_state () -> str:
		return await _call("tidal_get_state", {})

	@mcp.tool(name="tidal_solo", description=_description("tidal_solo"))
	async def tidal_solo (channel: ChannelName) -> str:
		return await _call("tidal_solo", {"channel": channel})

	@mcp.tool(name="tidal_unsolo", description=_description("tidal_unsolo"))
	async def tidal_unsolo () -> str:
		return await _call("tidal_unsolo", {})

	@mcp.tool(name="tidal_get_history", description=_description("tidal_get_history"))
	async def tidal_get_history (limit: typing.Optional[int] = None) -> str:
		return await _call("tidal_get_history", {"limit": limit})

	return mcp
