"""Shared cross-cutting concerns: config, interfaces, models, errors, credentials, entitlements."""

__all__ = [
    "config",
    "constants",
    "entitlements",
    "errors",
    "interfaces",
    "models",
    "vault",
]
