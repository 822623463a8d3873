"""Database connection and introspection utilities.

This package provides connection pool management and schema introspection
for PostgreSQL.
"""

from sequelae_mcp.db.introspection import SchemaIntrospector
from sequelae_mcp.db.pool import PoolManager, close_pool_manager, create_pool, get_pool_manager

__all__ = [
    "SchemaIntrospector",
    "PoolManager",
    "create_pool",
    "get_pool_manager",
    "close_pool_manager",
]
