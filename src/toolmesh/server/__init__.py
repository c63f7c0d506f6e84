"""Server layer — the protocol state machine and its stdio entrypoint."""

from toolmesh.server.server import ProtocolServer, ServerState, SessionState
from toolmesh.server.stdio import StdioStreams, serve_stdio

__all__ = [
    "ProtocolServer",
    "ServerState",
    "SessionState",
    "StdioStreams",
    "serve_stdio",
]
