"""Tool providers — the sources a server aggregates behind namespaces."""

from toolmesh.providers.base import NAMESPACE_SEPARATOR, ToolProvider
from toolmesh.providers.builtin import BuiltinToolProvider, FunctionTool, ToolRegistry
from toolmesh.providers.composite import CompositeToolProvider
from toolmesh.providers.remote import RemoteToolProvider

__all__ = [
    "NAMESPACE_SEPARATOR",
    "BuiltinToolProvider",
    "CompositeToolProvider",
    "FunctionTool",
    "RemoteToolProvider",
    "ToolProvider",
    "ToolRegistry",
]
