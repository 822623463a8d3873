"""Database backups through pg_dump.

The dump itself is delegated to the pg_dump binary. This module builds its
argument vector, streams its stdout into a partial file that replaces the
output file only on success, captures stderr for diagnostics and decides
whether the run succeeded. A running dump cannot be cancelled.
"""

import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlsplit, urlunsplit

from sequelae_mcp.config.settings import BackupConfig, mask_url_password
from sequelae_mcp.models.errors import BackupError, ConfigurationError, ValidationError
from sequelae_mcp.models.results import BackupFormat, BackupOptions, BackupResult
from sequelae_mcp.observability.metrics import metrics

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    BackupFormat.PLAIN: ".sql",
    BackupFormat.CUSTOM: ".dump",
    BackupFormat.DIRECTORY: "",
    BackupFormat.TAR: ".tar",
}


@dataclass
class DumpOutcome:
    """Exit status and captured stderr of a finished dump process."""

    returncode: int
    stderr: str


class DumpRunner(Protocol):
    """Runs a dump command to completion."""

    async def run(
        self, argv: list[str], env: dict[str, str], stdout_path: Path | None
    ) -> DumpOutcome:
        """Run ``argv`` and wait for it to exit.

        Args:
            argv: Command and arguments.
            env: Complete child environment.
            stdout_path: File receiving stdout, or None to discard stdout.

        Returns:
            DumpOutcome: Exit status and decoded stderr.
        """
        ...


class SubprocessDumpRunner:
    """DumpRunner backed by ``asyncio.create_subprocess_exec``."""

    async def run(
        self, argv: list[str], env: dict[str, str], stdout_path: Path | None
    ) -> DumpOutcome:
        if stdout_path is None:
            return await self._spawn(argv, env, asyncio.subprocess.DEVNULL)
        with stdout_path.open("wb") as sink:
            return await self._spawn(argv, env, sink)

    async def _spawn(self, argv: list[str], env: dict[str, str], stdout: object) -> DumpOutcome:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(
                message=f"pg_dump not found: {argv[0]}",
                details={"binary": argv[0]},
            ) from e

        _, stderr = await process.communicate()
        return DumpOutcome(
            returncode=process.returncode if process.returncode is not None else -1,
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        )


def split_password(connection_url: str) -> tuple[str, str | None]:
    """Remove the password from a connection URI.

    Args:
        connection_url: Postgres connection URI.

    Returns:
        tuple: (URI without password, password or None).
    """
    parts = urlsplit(connection_url)
    if parts.password is None:
        return connection_url, None
    userinfo, _, hostinfo = parts.netloc.rpartition("@")
    username = userinfo.split(":", 1)[0]
    netloc = f"{username}@{hostinfo}" if username else hostinfo
    return urlunsplit(parts._replace(netloc=netloc)), unquote(parts.password)


def partial_path(path: Path) -> Path:
    """Hidden sibling receiving a file dump until it completes."""
    return path.with_name(f".{path.name}.partial")


def output_size(path: Path) -> int:
    """Size of a backup file, or the total size of a backup directory."""
    if path.is_dir():
        return sum(entry.stat().st_size for entry in path.rglob("*") if entry.is_file())
    return path.stat().st_size


class BackupOrchestrator:
    """Runs pg_dump for a database and reports the outcome.

    Example:
        >>> orchestrator = BackupOrchestrator(url, BackupConfig())
        >>> result = await orchestrator.run(BackupOptions(format="custom"))
        >>> print(result.output_path, result.size_bytes)
    """

    def __init__(
        self,
        connection_url: str,
        config: BackupConfig | None = None,
        runner: DumpRunner | None = None,
    ) -> None:
        """Initialize backup orchestrator.

        Args:
            connection_url: Postgres connection URI of the database to dump.
            config: Backup configuration.
            runner: Process runner; defaults to a real subprocess runner.
        """
        self.connection_url = connection_url
        self.config = config or BackupConfig()
        self.runner: DumpRunner = runner or SubprocessDumpRunner()

    def resolve_binary(self) -> str:
        """Locate pg_dump on the search path.

        Raises:
            ConfigurationError: If the binary cannot be found.
        """
        binary = shutil.which(self.config.pg_dump_path)
        if binary is None:
            raise ConfigurationError(
                message=(
                    f"{self.config.pg_dump_path} not found on PATH; "
                    "install the PostgreSQL client tools"
                ),
                details={"binary": self.config.pg_dump_path},
            )
        return binary

    def default_output_path(self, options: BackupOptions, now: datetime | None = None) -> Path:
        """Timestamped output path in the configured output directory."""
        timestamp = (now or datetime.now(UTC)).strftime("%Y%m%d_%H%M%S")
        extension = _EXTENSIONS[options.format]
        if options.compress and options.format == BackupFormat.PLAIN:
            extension += ".gz"
        return Path(self.config.output_dir) / f"backup_{timestamp}{extension}"

    def build_command(self, binary: str, options: BackupOptions, output_path: Path) -> list[str]:
        """Build the pg_dump argument vector.

        The password is never placed on the command line; see ``build_env``.

        Args:
            binary: pg_dump executable.
            options: Backup options.
            output_path: Target file or directory.

        Returns:
            list[str]: Command and arguments.
        """
        dbname, _ = split_password(self.connection_url)
        argv = [binary, f"--format={options.format.flag}", "--no-password", f"--dbname={dbname}"]

        argv.extend(f"--table={table}" for table in options.tables)
        argv.extend(f"--schema={schema}" for schema in options.schemas)

        if options.data_only:
            argv.append("--data-only")
        if options.schema_only:
            argv.append("--schema-only")
        if options.compress:
            argv.append(f"--compress={self.config.compression_level}")
        if options.format == BackupFormat.DIRECTORY:
            argv.append(f"--file={output_path}")

        return argv

    def build_env(self) -> dict[str, str]:
        """Child environment carrying the password as PGPASSWORD."""
        env = dict(os.environ)
        _, password = split_password(self.connection_url)
        if password is not None:
            env["PGPASSWORD"] = password
        return env

    async def run(self, options: BackupOptions | None = None) -> BackupResult:
        """Run pg_dump and report the result.

        Args:
            options: Backup options; defaults to a full plain-text dump.

        Returns:
            BackupResult: Successful result with output size and duration.

        Raises:
            ValidationError: If data_only and schema_only are both set.
            ConfigurationError: If pg_dump cannot be found.
            BackupError: If pg_dump fails, writes nothing, or the output
                cannot be written.
        """
        options = options or BackupOptions()
        if options.data_only and options.schema_only:
            raise ValidationError("data_only and schema_only are mutually exclusive")

        start = time.perf_counter()
        binary = self.resolve_binary()
        output_path = (
            Path(options.output_path) if options.output_path else self.default_output_path(options)
        )
        argv = self.build_command(binary, options, output_path)
        existed = output_path.exists()
        # File formats are written beside the target and renamed on success
        staging = None if options.format == BackupFormat.DIRECTORY else partial_path(output_path)

        logger.info(
            "Starting backup",
            extra={
                "format": options.format.value,
                "output_path": str(output_path),
                "database_url": mask_url_password(self.connection_url),
            },
        )

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            outcome = await self.runner.run(argv, self.build_env(), staging)
        except ConfigurationError:
            self._discard_output(output_path, staging, existed)
            raise
        except OSError as e:
            self._discard_output(output_path, staging, existed)
            raise BackupError(
                message=f"Failed to write backup output: {e!s}",
                details={"output_path": str(output_path), "error_type": type(e).__name__},
            ) from e

        if outcome.returncode != 0:
            self._discard_output(output_path, staging, existed)
            tail = self.config.stderr_tail
            stderr_tail = outcome.stderr[-tail:] if tail else ""
            raise BackupError(
                message=f"pg_dump exited with status {outcome.returncode}: {stderr_tail.strip()}",
                details={
                    "returncode": outcome.returncode,
                    "stderr": stderr_tail,
                    "output_path": str(output_path),
                },
            )

        written = staging or output_path
        size = output_size(written) if written.exists() else 0
        if size == 0:
            self._discard_output(output_path, staging, existed)
            raise BackupError(
                message="pg_dump produced no output",
                details={"output_path": str(output_path), "stderr": outcome.stderr},
            )

        if staging is not None:
            try:
                staging.replace(output_path)
            except OSError as e:
                self._discard_output(output_path, staging, existed)
                raise BackupError(
                    message=f"Failed to move backup into place: {e!s}",
                    details={"output_path": str(output_path), "error_type": type(e).__name__},
                ) from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Backup completed",
            extra={"output_path": str(output_path), "size_bytes": size, "duration_ms": duration_ms},
        )
        return BackupResult(
            success=True,
            output_path=str(output_path),
            format=options.format,
            size_bytes=size,
            duration_ms=duration_ms,
        )

    def _discard_output(self, path: Path, staging: Path | None, existed: bool) -> None:
        """Remove what a failed run wrote, leaving any previous output intact."""
        if staging is None:
            self._remove_empty_output(path, existed)
            return
        try:
            staging.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove partial backup {staging}: {e!s}")

    def _remove_empty_output(self, path: Path, existed: bool) -> None:
        """Delete an empty directory created by this run."""
        if existed:
            return
        try:
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        except OSError as e:
            logger.warning(f"Could not remove empty backup output {path}: {e!s}")


def record_backup_metrics(result: BackupResult) -> None:
    """Update backup metrics for a finished run."""
    status = "success" if result.success else "error"
    metrics.increment_backup(status=status, backup_format=result.format.value)
    if result.success and result.size_bytes is not None:
        metrics.set_backup_size(result.size_bytes)
