"""CompositeToolProvider — routes tool calls across namespaced providers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from toolmesh.protocol.errors import ExecutionFailedError, RegistrationError, ToolError, ToolNotFoundError
from toolmesh.protocol.models import ToolDefinition
from toolmesh.providers.base import (
    is_valid_local_name,
    qualify,
    split_qualified,
    validate_namespace,
)

if TYPE_CHECKING:
    from toolmesh.protocol.models import CallToolResult
    from toolmesh.providers.base import ToolProvider

logger = logging.getLogger(__name__)


class CompositeToolProvider:
    """Aggregates :class:`ToolProvider` objects under ``"{namespace}__"`` prefixes.

    Usage::

        composite = CompositeToolProvider()
        composite.register(BuiltinToolProvider(registry))
        composite.register(RemoteToolProvider("fs", session))

        tools = await composite.list_tools_all()          # "builtin__echo", "fs__read_file"
        result = await composite.call_tool("fs__read_file", {"path": "/tmp/x"})

    A provider whose listing fails is left out of that listing and the rest
    still contribute.  The provider set is meant to be fixed before serving.
    """

    def __init__(self) -> None:
        self._providers: list[ToolProvider] = []
        self._by_namespace: dict[str, ToolProvider] = {}

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> list[ToolProvider]:
        return list(self._providers)

    @property
    def namespaces(self) -> list[str]:
        return [p.namespace for p in self._providers]

    def register(self, provider: ToolProvider) -> None:
        """Append *provider*.

        Raises:
            RegistrationError: If the namespace is invalid or already taken.
        """
        namespace = provider.namespace
        validate_namespace(namespace)
        if namespace in self._by_namespace:
            msg = f"Namespace already registered: {namespace}"
            raise RegistrationError(msg)
        self._providers.append(provider)
        self._by_namespace[namespace] = provider
        logger.debug("Registered provider %r", namespace)

    def get(self, namespace: str) -> ToolProvider | None:
        return self._by_namespace.get(namespace)

    async def list_tools_all(self) -> list[ToolDefinition]:
        """Every provider's tools, in registration order, with prefixed names.

        Entries are validated as :class:`ToolDefinition`; a provider whose
        listing raises or contains an invalid entry is omitted as a whole.
        """
        all_tools: list[ToolDefinition] = []
        for provider in self._providers:
            namespace = provider.namespace
            try:
                tools = [ToolDefinition.model_validate(t) for t in await provider.list_tools()]
            except Exception:
                logger.exception("Provider %r failed to list tools; omitting it", namespace)
                continue

            for tool in tools:
                if not is_valid_local_name(tool.name):
                    logger.warning(
                        "Provider %r declares tool %r that cannot be namespaced; skipping",
                        namespace,
                        tool.name,
                    )
                    continue
                all_tools.append(tool.model_copy(update={"name": qualify(namespace, tool.name)}))
        return all_tools

    async def call_tool(self, namespaced_name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Route ``"{namespace}__{name}"`` to its provider with the local name.

        Raises:
            ToolNotFoundError: If the name has no separator or the namespace
                is unknown.
            ToolError: Whatever the provider raises; any other exception is
                wrapped in :class:`ExecutionFailedError`.
        """
        parts = split_qualified(namespaced_name)
        if parts is None:
            raise ToolNotFoundError(namespaced_name, "name has no namespace prefix")

        namespace, local_name = parts
        provider = self._by_namespace.get(namespace)
        if provider is None:
            raise ToolNotFoundError(namespaced_name, f"no provider for namespace {namespace!r}")

        try:
            return await provider.call_tool(local_name, arguments)
        except ToolError:
            raise
        except Exception as exc:
            logger.exception("Provider %r raised while calling %s", namespace, local_name)
            raise ExecutionFailedError(namespaced_name, str(exc) or type(exc).__name__) from exc
