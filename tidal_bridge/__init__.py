"""
tidal-bridge - let a conversational agent live code TidalCycles.

The bridge receives named operations (evaluate a pattern on a channel, silence
a channel, hush, solo, query state, fetch history), keeps an authoritative
model of what is playing, and forwards the resulting Tidal commands either to
a file watched by an editor plugin or straight into a GHCi process it manages.

Components:

- **Channel store** (``channel_state``) - the nine channels ``d1`` … ``d9``
  with their current pattern and age.
- **History** (``history``) - a bounded ring of evaluated patterns.
- **Sinks** (``sinks``) - ``FileSink`` rewrites a ``.tidal`` file;
  ``ProcessSink`` writes to the interpreter.
- **Interpreter manager** (``interpreter``) - spawns GHCi with
  ``BootTidal.hs``, waits for SuperDirt, restarts it transparently after a
  crash and closes it gracefully on shutdown.
- **Dispatcher** (``dispatcher``) - validates requests, updates state and
  submits commands, always answering with readable text.
- **Surfaces** - MCP over stdio (``mcp_app``), JSON-RPC over WebSocket
  (``ws_server``) and OSC control (``osc``).

Minimal example:

    ```python
    import asyncio
    import tidal_bridge

    async def main ():
        config = tidal_bridge.load_config(tidal_file="live.tidal")
        async with tidal_bridge.BridgeSession(config) as session:
            result = await session.dispatcher.call("tidal_eval", {"channel": "d1", "pattern": 's "bd*4"'})
            print(result.text)

    asyncio.run(main())
    ```

Package-level exports: ``BridgeConfig``, ``BridgeSession``, ``load_config``.
"""

import tidal_bridge.config
import tidal_bridge.session


BridgeConfig = tidal_bridge.config.BridgeConfig
BridgeSession = tidal_bridge.session.BridgeSession
load_config = tidal_bridge.config.load_config
