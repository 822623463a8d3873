"""Service layer for sequelae-mcp.

This module provides the execution engine: statement splitting, SQL and
script execution, and pg_dump backups.
"""

from sequelae_mcp.services.backup import BackupOrchestrator, DumpRunner, SubprocessDumpRunner
from sequelae_mcp.services.sql_executor import SQLExecutor
from sequelae_mcp.services.statement_splitter import split_statements

__all__ = [
    "SQLExecutor",
    "BackupOrchestrator",
    "DumpRunner",
    "SubprocessDumpRunner",
    "split_statements",
]
