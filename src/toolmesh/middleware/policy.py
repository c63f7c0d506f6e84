"""Security policies consulted by the built-in guards.

Pure logic, no I/O.  Each ``validate``/``evaluate`` method answers one
question about a single value and never touches the network.
"""

from __future__ import annotations

import fnmatch
import ipaddress
from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, Field

_DEFAULT_ALLOWED_COMMANDS = [
    "echo",
    "cat",
    "ls",
    "pwd",
    "head",
    "tail",
    "wc",
    "grep",
    "find",
    "sort",
    "uniq",
    "diff",
    "date",
    "env",
    "true",
    "false",
    "test",
]

_DEFAULT_DANGEROUS_PATTERNS = [
    "rm -rf /",
    "sudo ",
    "mkfs",
    "dd if=",
    ":(){ :|:& };:",
    "chmod 777 /",
    "> /dev/sd",
    "shutdown",
    "reboot",
    "poweroff",
]

METADATA_HOSTS = frozenset({"169.254.169.254", "metadata.google.internal", "metadata.internal"})


class PolicyViolation(ValueError):  # noqa: N818
    """A value was refused by a policy; the message says why."""


class CommandPolicy(BaseModel):
    """Allowlist of executables plus substrings that are never allowed."""

    allowed_commands: set[str] = Field(default_factory=lambda: set(_DEFAULT_ALLOWED_COMMANDS))
    dangerous_patterns: list[str] = Field(default_factory=lambda: list(_DEFAULT_DANGEROUS_PATTERNS))

    def validate_command(self, command: str) -> None:
        """Raise :class:`PolicyViolation` if *command* may not run.

        Dangerous patterns are matched case-insensitively with all whitespace
        collapsed to spaces; the executable is the basename of the first word.
        Shell operators such as ``;``, ``&&`` and ``|`` are not parsed, so only
        the first command of a chained line is checked against the allowlist.
        Callers that hand the string to a shell must not rely on this alone.
        """
        normalized = " ".join(command.split()).lower()
        for pattern in self.dangerous_patterns:
            if pattern.lower() in normalized:
                msg = f"dangerous pattern: {pattern}"
                raise PolicyViolation(msg)

        words = command.split()
        executable = words[0].rsplit("/", 1)[-1] if words else ""
        if executable not in self.allowed_commands:
            msg = f"command not allowed: {executable}"
            raise PolicyViolation(msg)


class UrlPolicy(BaseModel):
    """Blocks cloud metadata endpoints, private networks and listed domains."""

    enabled: bool = True
    blocked_domains: set[str] = Field(default_factory=set)

    def validate_url(self, url: str) -> None:
        """Raise :class:`PolicyViolation` if *url* points somewhere forbidden."""
        if not self.enabled:
            return

        host = _extract_host(url)
        if host in {d.lower() for d in self.blocked_domains}:
            msg = f"blocked domain: {host}"
            raise PolicyViolation(msg)
        if host in METADATA_HOSTS:
            msg = f"blocked metadata endpoint: {host}"
            raise PolicyViolation(msg)
        if _is_private_or_loopback(host):
            msg = f"blocked private address: {host}"
            raise PolicyViolation(msg)


def _extract_host(url: str) -> str:
    # Bare "host/path" values have no scheme; give urlsplit a netloc to parse.
    parts = urlsplit(url if "://" in url else f"//{url}")
    try:
        host = parts.hostname or ""
    except ValueError:
        host = ""
    return host.lower()


def _is_private_or_loopback(host: str) -> bool:
    if host in {"localhost", "0.0.0.0", "::1"}:
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


# ---------------------------------------------------------------------------
# Tool-name rules
# ---------------------------------------------------------------------------


class PolicyAction(str, Enum):
    """Action a policy rule prescribes for a tool."""

    ALLOW = "allow"
    DENY = "deny"


class ToolPolicy(BaseModel):
    """A single rule matching namespaced tool names to an action."""

    pattern: str = Field(..., description="Tool name or glob pattern (e.g. 'fs__*', '*').")
    action: PolicyAction = Field(..., description="What to do when this rule matches.")
    reason: str = Field(default="", description="Human-readable rationale for the rule.")


class ToolPolicyConfig(BaseModel):
    """Ordered allow/deny rules applied to every call."""

    enabled: bool = Field(default=True, description="Master switch for rule checks.")
    default_action: PolicyAction = Field(
        default=PolicyAction.ALLOW,
        description="Action when no rule matches.",
    )
    policies: list[ToolPolicy] = Field(
        default_factory=list,
        description="Ordered rules (first match wins).",
    )


class PolicyEngine:
    """Evaluate a tool name against a :class:`ToolPolicyConfig`."""

    def __init__(self, config: ToolPolicyConfig) -> None:
        self._config = config

    @property
    def config(self) -> ToolPolicyConfig:
        return self._config

    def match(self, tool_name: str) -> ToolPolicy | None:
        """Return the first rule whose pattern matches, if any."""
        for policy in self._config.policies:
            if fnmatch.fnmatchcase(tool_name, policy.pattern):
                return policy
        return None

    def evaluate(self, tool_name: str) -> PolicyAction:
        if not self._config.enabled:
            return PolicyAction.ALLOW
        policy = self.match(tool_name)
        return policy.action if policy is not None else self._config.default_action
