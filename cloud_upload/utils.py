# utils.py
import asyncio
import hashlib
import os
from abc import ABC, abstractmethod
from typing import Union

MiB = 1024 * 1024
GiB = 1024 * MiB

# Files above 2 * HASH_SAMPLE_SIZE are fingerprinted from head, tail and size only
HASH_SAMPLE_SIZE = 1 * MiB


class ByteSource(ABC):
    """Random-access view over the bytes being uploaded"""

    name: str = "file"

    @property
    @abstractmethod
    def size(self) -> int:
        ...

    @abstractmethod
    async def read(self, start: int, end: int) -> bytes:
        """Bytes in [start, end)"""


class BytesSource(ByteSource):
    def __init__(self, data: Union[bytes, bytearray, memoryview], name: str = "file"):
        self._data = memoryview(data)
        self.name = name

    @property
    def size(self) -> int:
        return self._data.nbytes

    async def read(self, start: int, end: int) -> bytes:
        return self._data[start:end].tobytes()


class FileSource(ByteSource):
    """A file on disk, read one range at a time in a worker thread"""

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = os.fspath(path)
        self.name = os.path.basename(self.path)
        self._size = os.path.getsize(self.path)

    @property
    def size(self) -> int:
        return self._size

    def _read_range(self, start: int, end: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    async def read(self, start: int, end: int) -> bytes:
        return await asyncio.to_thread(self._read_range, start, end)


Source = Union[bytes, bytearray, memoryview, str, os.PathLike, ByteSource]


def as_byte_source(source: Source) -> ByteSource:
    if isinstance(source, ByteSource):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(source)
    if isinstance(source, (str, os.PathLike)):
        return FileSource(source)
    raise TypeError(f"Unsupported upload source: {type(source).__name__}")


async def compute_file_hash(source: Source) -> str:
    """SHA-256 fingerprint used to recognise the same upload across restarts.

    Small inputs are hashed whole. Larger ones hash the first and last
    HASH_SAMPLE_SIZE bytes followed by the size as an 8-byte big-endian
    integer, which keeps the cost flat for multi-gigabyte files.
    """
    source = as_byte_source(source)
    size = source.size
    digest = hashlib.sha256()

    if size <= HASH_SAMPLE_SIZE * 2:
        digest.update(await source.read(0, size))
    else:
        digest.update(await source.read(0, HASH_SAMPLE_SIZE))
        digest.update(await source.read(size - HASH_SAMPLE_SIZE, size))
        digest.update(size.to_bytes(8, "big"))
    return digest.hexdigest()


def calculate_part_size(file_size: int) -> int:
    """Recommended part size for a file of the given size"""
    if file_size < 100 * MiB:
        return 5 * MiB
    if file_size < 1 * GiB:
        return 10 * MiB
    if file_size < 10 * GiB:
        return 50 * MiB
    return 100 * MiB


def format_file_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
