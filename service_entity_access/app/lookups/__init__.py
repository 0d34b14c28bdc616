"""
Lookup collaborators package.

Ports for permission checks and entity/relationship lookups, with an
in-memory adapter (local runs, tests) and an asyncpg adapter.
"""

from .ports import EntityDirectory, PermissionChecker
from .memory import InMemoryEntityDirectory, InMemoryPermissionChecker
from .postgres import PostgresEntityDirectory, PostgresPermissionChecker

__all__ = [
    "EntityDirectory",
    "PermissionChecker",
    "InMemoryEntityDirectory",
    "InMemoryPermissionChecker",
    "PostgresEntityDirectory",
    "PostgresPermissionChecker",
]
