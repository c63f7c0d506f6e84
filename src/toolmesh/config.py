"""Server settings: the YAML schema, its loader, and the builders that use it.

Example ``toolmesh.yaml``::

    name: my-tools
    permissions: [fs__read_file, web__fetch]
    providers:
      - name: fs
        transport: stdio
        command: npx -y @modelcontextprotocol/server-filesystem /tmp
      - name: web
        transport: http
        url: https://tools.example.com/mcp
        headers:
          Authorization: Bearer ${WEB_TOOLS_TOKEN}
    middleware:
      max_result_bytes: 32768
      tool_policy:
        policies:
          - pattern: "fs__write_*"
            action: deny
            reason: read-only deployment
    telemetry:
      enabled: true
      otlp_endpoint: http://localhost:4317
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from toolmesh import __version__
from toolmesh.middleware.guards import (
    DEFAULT_MAX_RESULT_BYTES,
    AuditLog,
    PermissionFilter,
    ResultGuard,
    SecurityGuard,
    ToolPolicyGuard,
)
from toolmesh.middleware.policy import CommandPolicy, ToolPolicyConfig, UrlPolicy
from toolmesh.protocol.errors import RegistrationError, SessionError
from toolmesh.protocol.models import PeerInfo
from toolmesh.protocol.session import ClientSession
from toolmesh.protocol.transport import DEFAULT_REQUEST_TIMEOUT, HttpTransport, StdioTransport
from toolmesh.providers.base import validate_namespace
from toolmesh.providers.composite import CompositeToolProvider
from toolmesh.providers.remote import RemoteToolProvider
from toolmesh.server.server import ProtocolServer
from toolmesh.server.stdio import serve_stdio

if TYPE_CHECKING:
    from toolmesh.middleware.base import Middleware
    from toolmesh.protocol.transport import MCPTransport

logger = logging.getLogger(__name__)


class SettingsError(Exception):
    """Raised when a settings file cannot be read, parsed or validated."""


class RemoteServerRef(BaseModel):
    """Another MCP server whose tools are re-served under ``name``."""

    name: str
    transport: Literal["stdio", "http"] = "stdio"
    command: str | None = None
    url: str | None = None
    env: dict[str, str] = {}
    headers: dict[str, str] = {}
    timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    @field_validator("name")
    @classmethod
    def _valid_namespace(cls, value: str) -> str:
        try:
            validate_namespace(value)
        except RegistrationError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @model_validator(mode="after")
    def _endpoint_for_transport(self) -> RemoteServerRef:
        if self.transport == "stdio" and not self.command:
            msg = f"Provider {self.name!r}: stdio transport requires 'command'"
            raise ValueError(msg)
        if self.transport == "http" and not self.url:
            msg = f"Provider {self.name!r}: http transport requires 'url'"
            raise ValueError(msg)
        return self


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None
    export_to_console: bool = False


class MiddlewareSettings(BaseModel):
    """Which built-in middlewares run and how they are tuned."""

    audit: bool = True
    command_policy: CommandPolicy = Field(default_factory=CommandPolicy)
    url_policy: UrlPolicy = Field(default_factory=UrlPolicy)
    tool_policy: ToolPolicyConfig | None = None
    allowed_tools: list[str] | None = None
    max_result_bytes: int = Field(default=DEFAULT_MAX_RESULT_BYTES, gt=0)


class ServerSettings(BaseModel):
    """Top-level settings parsed from YAML."""

    name: str = "toolmesh"
    version: str = __version__
    instructions: str | None = None
    permissions: list[str] | None = None
    providers: list[RemoteServerRef] = []
    middleware: MiddlewareSettings = Field(default_factory=MiddlewareSettings)
    telemetry: TelemetrySettings | None = None

    @model_validator(mode="after")
    def _unique_provider_names(self) -> ServerSettings:
        seen: set[str] = set()
        for ref in self.providers:
            if ref.name in seen:
                msg = f"Duplicate provider name: {ref.name}"
                raise ValueError(msg)
            seen.add(ref.name)
        return self


class SettingsLoader:
    """Load and validate a settings YAML file into :class:`ServerSettings`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> ServerSettings:
        """Read YAML, interpolate env vars, and validate.

        ``${VAR}`` and ``$VAR`` are expanded with :func:`os.path.expandvars`
        before parsing.  An empty file yields the defaults.

        Raises:
            SettingsError: On read, YAML or validation failures.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SettingsError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise SettingsError(f"YAML parse error: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise SettingsError("Settings YAML must be a mapping")

        try:
            return ServerSettings.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc


def build_middleware(settings: ServerSettings) -> list[Middleware]:
    """Built-in middlewares in their canonical order.

    ``AuditLog`` is outermost so it logs the final, policy-applied result;
    ``ResultGuard`` is innermost so every other layer sees truncated output.
    """
    mw = settings.middleware
    chain: list[Middleware] = []
    if mw.audit:
        chain.append(AuditLog())
    chain.append(SecurityGuard(mw.command_policy, mw.url_policy))
    if mw.tool_policy is not None:
        chain.append(ToolPolicyGuard(mw.tool_policy))
    if mw.allowed_tools is not None:
        chain.append(PermissionFilter(mw.allowed_tools))
    chain.append(ResultGuard(mw.max_result_bytes))
    return chain


def build_server(settings: ServerSettings, composite: CompositeToolProvider) -> ProtocolServer:
    return ProtocolServer(
        composite,
        build_middleware(settings),
        server_info=PeerInfo(name=settings.name, version=settings.version),
        instructions=settings.instructions,
        permissions=settings.permissions,
    )


def make_transport(ref: RemoteServerRef) -> MCPTransport:
    if ref.transport == "http":
        assert ref.url is not None
        return HttpTransport(ref.url, headers=ref.headers, timeout=ref.timeout)
    assert ref.command is not None
    # The child inherits our environment; ``env`` only adds or overrides.
    env = {**os.environ, **ref.env} if ref.env else None
    return StdioTransport(ref.command, env, timeout=ref.timeout)


async def connect_providers(
    settings: ServerSettings,
    composite: CompositeToolProvider,
) -> list[ClientSession]:
    """Connect every configured remote server and register it on *composite*.

    A server whose handshake fails is logged and left out; the others are
    still served.  Returns the connected sessions so the caller can close
    them.
    """
    sessions: list[ClientSession] = []
    for ref in settings.providers:
        session = ClientSession(make_transport(ref), timeout=ref.timeout)
        try:
            await session.connect()
        except SessionError as exc:
            logger.error("Could not connect provider %r: %s", ref.name, exc)
            await session.close()
            continue
        try:
            composite.register(RemoteToolProvider(ref.name, session))
        except RegistrationError:
            await session.close()
            raise
        sessions.append(session)
    return sessions


async def run_stdio(
    settings: ServerSettings,
    composite: CompositeToolProvider | None = None,
) -> None:
    """Serve *composite* plus the configured remote providers on stdio.

    Pass a pre-populated *composite* to serve in-process tools alongside the
    remote ones.  Remote sessions are closed when stdin reaches EOF.
    """
    if composite is None:
        composite = CompositeToolProvider()

    sessions = await connect_providers(settings, composite)
    try:
        await serve_stdio(build_server(settings, composite))
    finally:
        for session in sessions:
            await session.close()
