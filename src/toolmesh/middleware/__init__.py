"""Middleware layer — policy, permission, size and audit hooks around tool calls."""

from toolmesh.middleware.base import Middleware, MiddlewareChain, MiddlewareContext
from toolmesh.middleware.guards import (
    AuditLog,
    PermissionFilter,
    ResultGuard,
    SecurityGuard,
    ToolPolicyGuard,
)
from toolmesh.middleware.policy import (
    CommandPolicy,
    PolicyAction,
    PolicyEngine,
    PolicyViolation,
    ToolPolicy,
    ToolPolicyConfig,
    UrlPolicy,
)

__all__ = [
    "AuditLog",
    "CommandPolicy",
    "Middleware",
    "MiddlewareChain",
    "MiddlewareContext",
    "PermissionFilter",
    "PolicyAction",
    "PolicyEngine",
    "PolicyViolation",
    "ResultGuard",
    "SecurityGuard",
    "ToolPolicy",
    "ToolPolicyConfig",
    "ToolPolicyGuard",
    "UrlPolicy",
]
