"""toolmesh — pluggable MCP tool server with namespaced providers and policy middleware."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from toolmesh.protocol.session import ClientSession as ClientSession
    from toolmesh.providers.builtin import BuiltinToolProvider as BuiltinToolProvider
    from toolmesh.providers.builtin import ToolRegistry as ToolRegistry
    from toolmesh.providers.composite import CompositeToolProvider as CompositeToolProvider
    from toolmesh.server.server import ProtocolServer as ProtocolServer

_LAZY_EXPORTS = {
    "ClientSession": "toolmesh.protocol.session",
    "BuiltinToolProvider": "toolmesh.providers.builtin",
    "ToolRegistry": "toolmesh.providers.builtin",
    "CompositeToolProvider": "toolmesh.providers.composite",
    "ProtocolServer": "toolmesh.server.server",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'toolmesh' has no attribute {name!r}")
