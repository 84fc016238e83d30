"""Expense tracking service: typed RPC server, relational store and client."""

from __future__ import annotations

__all__ = [
    "__version__",
    "cli",
    "client",
    "config",
    "crud",
    "database",
    "models",
    "rpc",
    "schemas",
    "server",
]

__version__ = "1.0.0"
