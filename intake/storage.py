"""
Byte storage backends.

The audit engine only needs the small `LogStore` contract below. The local
filesystem implementation also carries the file-object operations the
upload and download endpoints use.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Iterator, List, Protocol

from intake.exceptions import StorageError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class LogStore(Protocol):
    """Named-object store consumed by the audit log engine."""

    async def exists(self, path: str) -> bool: ...

    async def read_all(self, path: str) -> str: ...

    async def write_all(self, path: str, content: str) -> None: ...

    async def append(self, path: str, content: str) -> None: ...

    async def list(self, prefix: str) -> List[str]: ...


class LocalStorage:
    """
    Local filesystem storage.

    Blocking file I/O runs in worker threads so a slow disk never stalls
    the event loop. Every failure is raised as StorageError.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    # ------------------------------------------------------------------
    # Text objects (audit logs)
    # ------------------------------------------------------------------

    async def exists(self, path: str) -> bool:
        """Return True if a regular file exists at path."""
        return await asyncio.to_thread(Path(path).is_file)

    async def read_all(self, path: str) -> str:
        """Read a whole text object."""
        return await asyncio.to_thread(self._read_text, path)

    async def write_all(self, path: str, content: str) -> None:
        """Create or overwrite a text object."""
        await asyncio.to_thread(self._write_text, path, content, "w")
        logger.debug(f"Wrote string to local storage: {path}")

    async def append(self, path: str, content: str) -> None:
        """Append text to an object, creating it if needed."""
        await asyncio.to_thread(self._write_text, path, content, "a")
        logger.debug(f"Appended to file: {path}")

    async def list(self, prefix: str) -> List[str]:
        """List regular files below a directory prefix, recursively."""
        return await asyncio.to_thread(self._list_files, prefix)

    def _read_text(self, path: str) -> str:
        file_path = Path(path)
        if not file_path.is_file():
            raise StorageError(f"File not found: {path}", path)
        try:
            return file_path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read string: {path}", path) from e

    def _write_text(self, path: str, content: str, mode: str) -> None:
        file_path = Path(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with file_path.open(mode, encoding=self.encoding, newline="") as f:
                f.write(content)
        except OSError as e:
            raise StorageError(f"Failed to write string: {path}", path) from e

    def _list_files(self, prefix: str) -> List[str]:
        root = Path(prefix)
        if not root.is_dir():
            return []
        try:
            return sorted(p.as_posix() for p in root.rglob("*") if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to list files with prefix: {prefix}", prefix) from e

    # ------------------------------------------------------------------
    # Binary objects (uploaded files)
    # ------------------------------------------------------------------

    async def write_file(self, path: str, source: BinaryIO) -> int:
        """
        Stream a binary file object to path.

        Returns:
            Number of bytes written
        """
        written = await asyncio.to_thread(self._copy_in, path, source)
        logger.debug(f"Wrote file to local storage: {path} ({written} bytes)")
        return written

    def _copy_in(self, path: str, source: BinaryIO) -> int:
        file_path = Path(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with file_path.open("wb") as target:
                shutil.copyfileobj(source, target, DEFAULT_CHUNK_SIZE)
                return target.tell()
        except OSError as e:
            raise StorageError(f"Failed to write file: {path}", path) from e

    async def open_file(self, path: str) -> BinaryIO:
        """
        Open a binary file for streaming.

        Opening up front means a missing file fails before any response
        bytes are sent. The caller owns the handle.
        """
        return await asyncio.to_thread(self._open_binary, path)

    def _open_binary(self, path: str) -> BinaryIO:
        file_path = Path(path)
        if not file_path.is_file():
            raise StorageError(f"File not found: {path}", path)
        try:
            return file_path.open("rb")
        except OSError as e:
            raise StorageError(f"Failed to read file: {path}", path) from e

    @staticmethod
    def iter_chunks(handle: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield a handle's contents in chunks, closing it when done."""
        with handle:
            while True:
                chunk = handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def health_check(self, *paths: Path) -> bool:
        """Check that every root directory exists (or can be made) and is writable."""
        def probe() -> bool:
            for root in paths:
                try:
                    root.mkdir(parents=True, exist_ok=True)
                    marker = root / ".health"
                    marker.write_text("ok")
                    marker.unlink()
                except OSError as e:
                    logger.error(f"Storage health check failed for {root}: {e}")
                    return False
            return True

        return await asyncio.to_thread(probe)


# Global storage instance
storage = LocalStorage()


async def get_storage() -> LocalStorage:
    """FastAPI dependency for the storage backend."""
    return storage
