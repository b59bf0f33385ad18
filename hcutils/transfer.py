"""AsyncSSH-based transfer of volume contents.

One SSH session per transfer, one command per session. The remote
command's stdout is streamed into a local file (download), or a local file
is streamed into its stdin (upload). Nothing is retried: any failure ends
the transfer and the caller moves on to teardown.

Host keys are not verified. The server was created seconds ago by this
run, so there is no prior record to pin against.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

import asyncssh
from loguru import logger

from hcutils.exceptions import LocalIOError, SessionError, TransferError

type ConnectFn = Callable[..., Awaitable[asyncssh.SSHClientConnection]]

CHUNK_SIZE = 1024 * 1024
STDERR_TAIL = 4096


# =============================================================================
# Stream pumps
# =============================================================================


async def _copy_to_file(reader: asyncssh.SSHReader[bytes], sink: BinaryIO) -> int:
    total = 0
    while chunk := await reader.read(CHUNK_SIZE):
        try:
            sink.write(chunk)
        except OSError as e:
            raise LocalIOError(f"Could not write {getattr(sink, 'name', 'output')}: {e}") from e
        total += len(chunk)
    return total


async def _copy_from_file(source: BinaryIO, writer: asyncssh.SSHWriter[bytes]) -> int:
    total = 0
    while True:
        try:
            chunk = source.read(CHUNK_SIZE)
        except OSError as e:
            raise LocalIOError(f"Could not read {getattr(source, 'name', 'input')}: {e}") from e
        if not chunk:
            break
        try:
            writer.write(chunk)
            await writer.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Remote side stopped reading; its exit status tells why.
            logger.debug("Remote closed stdin after {n} bytes", n=total)
            return total
        total += len(chunk)
    writer.write_eof()
    return total


async def _collect_tail(reader: asyncssh.SSHReader[bytes], limit: int = STDERR_TAIL) -> bytes:
    tail = b""
    while chunk := await reader.read(CHUNK_SIZE):
        tail = (tail + chunk)[-limit:]
    return tail


async def _gather_or_cancel(*coros: Coroutine[Any, Any, Any]) -> list[Any]:
    """Run coroutines concurrently; cancel the rest as soon as one fails."""
    tasks = [asyncio.create_task(c) for c in coros]
    try:
        return list(await asyncio.gather(*tasks))
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)


# =============================================================================
# SSH Session
# =============================================================================


@dataclass
class SSHSession:
    """Single-command SSH session authenticated by an in-memory key.

    Example:
        >>> async with SSHSession(host="10.0.0.1", key=key) as session:
        ...     await session.stream_out("tar czf - .", sink)
    """

    host: str
    key: asyncssh.SSHKey
    user: str = "root"
    port: int = 22
    connect_timeout: float = 30.0
    connect: ConnectFn = asyncssh.connect

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def open(self) -> None:
        if self._conn is not None:
            return
        logger.debug("Connecting to {user}@{host}:{port}", user=self.user, host=self.host, port=self.port)
        try:
            self._conn = await self.connect(
                self.host,
                port=self.port,
                username=self.user,
                client_keys=[self.key],
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error) as e:
            raise SessionError(f"Could not connect to {self.host}:{self.port}: {e}") from e

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHSession:
        await self.open()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise SessionError("Not connected. Call open() first.")
        return self._conn

    async def stream_out(self, command: str, sink: BinaryIO) -> int:
        """Run command, writing its stdout into sink.

        The exit status is checked after stdout reaches EOF.

        Returns:
            Number of bytes written to sink.

        Raises:
            TransferError: If the command exits non-zero.
            LocalIOError: If writing to sink fails.
            SessionError: If the channel breaks.
        """
        conn = self._require_connection()
        try:
            async with conn.create_process(command, encoding=None) as proc:
                written, stderr = await _gather_or_cancel(
                    _copy_to_file(proc.stdout, sink),
                    _collect_tail(proc.stderr),
                )
                result = await proc.wait()
        except (OSError, asyncssh.Error) as e:
            raise SessionError(f"SSH channel to {self.host} failed: {e}") from e
        _check(command, result.exit_status, stderr)
        return written

    async def stream_in(self, command: str, source: BinaryIO) -> int:
        """Run command, feeding source into its stdin and closing it at EOF.

        Returns:
            Number of bytes sent.

        Raises:
            TransferError: If the command exits non-zero.
            LocalIOError: If reading source fails.
            SessionError: If the channel breaks.
        """
        conn = self._require_connection()
        try:
            async with conn.create_process(command, encoding=None) as proc:
                sent, stdout, stderr = await _gather_or_cancel(
                    _copy_from_file(source, proc.stdin),
                    _collect_tail(proc.stdout),
                    _collect_tail(proc.stderr),
                )
                result = await proc.wait()
        except (OSError, asyncssh.Error) as e:
            raise SessionError(f"SSH channel to {self.host} failed: {e}") from e
        if stdout:
            logger.debug("Remote output: {out}", out=stdout.decode(errors="replace"))
        _check(command, result.exit_status, stderr)
        return sent


def _check(command: str, exit_status: int | None, stderr: bytes) -> None:
    if exit_status != 0:
        raise TransferError(command, exit_status, stderr.decode(errors="replace"))


# =============================================================================
# Transfer Executor
# =============================================================================


def _open_local(path: Path, mode: str) -> BinaryIO:
    try:
        return path.open(mode)  # type: ignore[return-value]
    except OSError as e:
        raise LocalIOError(f"Could not open {path}: {e}") from e


def _close_local(f: BinaryIO) -> None:
    try:
        f.close()
    except OSError as e:
        raise LocalIOError(f"Could not close {getattr(f, 'name', 'file')}: {e}") from e


def _partial_path(destination: Path) -> Path:
    return destination.with_name(f"{destination.name}.part")


def _replace_local(partial: Path, destination: Path) -> None:
    try:
        partial.replace(destination)
    except OSError as e:
        with contextlib.suppress(OSError):
            partial.unlink(missing_ok=True)
        raise LocalIOError(f"Could not move download to {destination}: {e}") from e


@dataclass
class TransferExecutor:
    """Runs download and upload commands on the temporary server.

    The public methods are synchronous; each runs one session to
    completion on its own event loop.
    """

    user: str = "root"
    port: int = 22
    connect_timeout: float = 30.0
    connect: ConnectFn = asyncssh.connect

    def session(self, host: str, key: asyncssh.SSHKey) -> SSHSession:
        return SSHSession(
            host=host,
            key=key,
            user=self.user,
            port=self.port,
            connect_timeout=self.connect_timeout,
            connect=self.connect,
        )

    def download(self, host: str, key: asyncssh.SSHKey, command: str, destination: Path) -> int:
        return asyncio.run(self.download_async(host, key, command, destination))

    def upload(self, host: str, key: asyncssh.SSHKey, command: str, source: Path) -> int:
        return asyncio.run(self.upload_async(host, key, command, source))

    async def download_async(
        self, host: str, key: asyncssh.SSHKey, command: str, destination: Path,
    ) -> int:
        """Stream the command's stdout into destination.

        Data lands in a sibling ``.part`` file that replaces destination
        only once the remote command has succeeded. On failure it is
        removed and an existing destination is left as it was.
        """
        partial = _partial_path(destination)
        async with self.session(host, key) as session:
            sink = _open_local(partial, "wb")
            try:
                try:
                    written = await session.stream_out(command, sink)
                finally:
                    _close_local(sink)
            except BaseException:
                with contextlib.suppress(OSError):
                    partial.unlink(missing_ok=True)
                raise
        _replace_local(partial, destination)
        logger.info("Downloaded {n} bytes to {path}", n=written, path=destination)
        return written

    async def upload_async(
        self, host: str, key: asyncssh.SSHKey, command: str, source: Path,
    ) -> int:
        """Stream source into the command's stdin in a single pass."""
        async with self.session(host, key) as session:
            reader = _open_local(source, "rb")
            try:
                sent = await session.stream_in(command, reader)
            finally:
                _close_local(reader)
        logger.info("Uploaded {n} bytes from {path}", n=sent, path=source)
        return sent
