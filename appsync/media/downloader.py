"""
Handles the low-level copying of remote content into place. HTTP(S) sources are
streamed with aiohttp, 'file://' URLs and plain paths with aiofiles.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

import aiofiles
import aiofiles.os
import aiohttp

from appsync.exceptions import NotFoundError, TransferError
from appsync.utils.path import location_to_path

log = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"

ProgressCallback = Callable[[int, int], None]

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()


async def get_connection_pool(
    max_workers: int = 1,
    connect_timeout: float = 15.0,
    read_timeout: float = 90.0,
) -> aiohttp.ClientSession:
    """
    Gets or creates a shared aiohttp ClientSession for transfers.

    This function ensures that only one connection pool is created for the
    lifetime of the application run.

    Args:
        max_workers: Maximum concurrent connections (should match settings.max_workers).
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=max_workers * 2,
            limit_per_host=max_workers,
            ttl_dns_cache=600,  # 10 minutes
            keepalive_timeout=30,
            enable_cleanup_closed=True,
            force_close=False,
        )
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=connect_timeout, sock_read=read_timeout
        )
        _connection_pool = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"Accept-Encoding": "gzip, deflate"},
        )
        log.debug(f"Created transfer pool with limit_per_host={max_workers}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared transfer connection pool closed.")


async def _discard(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning(f"Could not remove partial file '{path}': {e}")


class Downloader:
    """
    Copies one source location to one destination file.

    Content is streamed into '<destination>.part' and renamed into place only
    once the stream is complete, so an interrupted transfer never leaves a
    file that looks finished.
    """

    def __init__(
        self,
        chunk_size: int = 131072,
        max_workers: int = 1,
        connect_timeout: float = 15.0,
        read_timeout: float = 90.0,
        max_attempts: int = 1,
        base_delay: float = 1.5,
    ):
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def download_file(
        self,
        location: str,
        destination_path: Path,
        total_size_estimate: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """
        Copies a location to destination_path, creating parent directories.

        Returns:
            The number of bytes written.

        Raises:
            NotFoundError: If the source does not exist.
            TransferError: For any other network or disk failure.
        """
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        partial_path = destination_path.with_name(
            destination_path.name + PARTIAL_SUFFIX
        )
        local_source = location_to_path(location)

        last_exception: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                if local_source is not None:
                    written = await self._copy_local(
                        local_source, partial_path, total_size_estimate, on_progress
                    )
                else:
                    written = await self._copy_http(
                        location, partial_path, total_size_estimate, on_progress
                    )
                await asyncio.to_thread(os.replace, partial_path, destination_path)
                return written
            except NotFoundError:
                await _discard(partial_path)
                raise
            except asyncio.CancelledError:
                await _discard(partial_path)
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                await _discard(partial_path)
                last_exception = e
                log.debug(
                    f"Transfer attempt {attempt}/{self.max_attempts} for "
                    f"'{destination_path.name}' failed: {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise TransferError(
            f"Failed to copy '{location}' to '{destination_path}': {last_exception}"
        ) from last_exception

    async def _copy_local(
        self,
        source: Path,
        partial_path: Path,
        total_size_estimate: int,
        on_progress: ProgressCallback | None,
    ) -> int:
        if not await asyncio.to_thread(source.is_file):
            raise NotFoundError(f"Source file not found: '{source}'")
        total = total_size_estimate or (await aiofiles.os.stat(source)).st_size
        written = 0
        async with aiofiles.open(source, "rb") as src, aiofiles.open(
            partial_path, "wb"
        ) as dst:
            while chunk := await src.read(self.chunk_size):
                await dst.write(chunk)
                written += len(chunk)
                if on_progress:
                    on_progress(written, total)
        return written

    async def _copy_http(
        self,
        url: str,
        partial_path: Path,
        total_size_estimate: int,
        on_progress: ProgressCallback | None,
    ) -> int:
        session = await get_connection_pool(
            self.max_workers, self.connect_timeout, self.read_timeout
        )
        async with session.get(url, allow_redirects=True) as response:
            if response.status == 404:
                raise NotFoundError(f"Source file not found: '{url}'")
            response.raise_for_status()

            total = int(response.headers.get("Content-Length", total_size_estimate))
            written = 0
            async with aiofiles.open(partial_path, "wb") as f:
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    await f.write(chunk)
                    written += len(chunk)
                    if on_progress:
                        on_progress(written, total)
        return written

    async def fetch_bytes(self, location: str) -> bytes:
        """
        Reads a whole (small) resource into memory, e.g. a manifest.

        Raises:
            NotFoundError: If the source does not exist.
            TransferError: For any other failure.
        """
        local_source = location_to_path(location)
        try:
            if local_source is not None:
                if not await asyncio.to_thread(local_source.is_file):
                    raise NotFoundError(f"Resource not found: '{local_source}'")
                async with aiofiles.open(local_source, "rb") as f:
                    return await f.read()

            session = await get_connection_pool(
                self.max_workers, self.connect_timeout, self.read_timeout
            )
            async with session.get(location, allow_redirects=True) as response:
                if response.status == 404:
                    raise NotFoundError(f"Resource not found: '{location}'")
                response.raise_for_status()
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransferError(f"Failed to read '{location}': {e}") from e
