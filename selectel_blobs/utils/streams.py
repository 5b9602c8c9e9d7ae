import inspect
from typing import Any, AsyncIterator

# 32 KiB
DEFAULT_CHUNK_SIZE = 32 * 1024


def is_async_readable(data: Any) -> bool:
    return hasattr(data, "read") and inspect.iscoroutinefunction(data.read)


async def iter_chunks(data: Any, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read a source in chunks.

    Args:
        data (Any): Bytes, a binary file-like object or an object with an async read() (e.g. an upload).
        chunk_size (int, optional): The chunk size. Defaults to 32 KiB.

    Yields:
        bytes: The chunks, until the source is exhausted.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        view = memoryview(data)
        for start in range(0, len(view), chunk_size):
            yield bytes(view[start:start + chunk_size])
        return
    if not hasattr(data, "read"):
        raise TypeError(f"Cannot read data of type {type(data).__name__}")
    is_async = is_async_readable(data)
    while True:
        chunk = await data.read(chunk_size) if is_async else data.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def read_all(data: Any) -> bytes:
    """Buffer a whole source in memory."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    return b"".join([chunk async for chunk in iter_chunks(data)])
