from enum import Enum
from typing import Any, Iterable, List, Optional
from ..models.blobs import Blob, ListOptions
from ..utils.paths import is_root_path
from ..utils.streams import read_all


class ErrorCode(str, Enum):
  NOT_FOUND = "NotFound"
  UNSUPPORTED = "Unsupported"
  UNKNOWN = "Unknown"


class StorageError(Exception):
  """Exception raised when managing blobs."""

  def __init__(self, message: str, code: ErrorCode = ErrorCode.UNKNOWN):
    super().__init__(message)
    self.code = code


class BlobNotFoundError(StorageError):
  """Exception raised when a blob does not exist and there is no other way to say so."""

  def __init__(self, message: str):
    super().__init__(message, ErrorCode.NOT_FOUND)


class UnsupportedOperationError(StorageError):
  """Exception raised, before any network call, for operations a backend cannot do."""

  def __init__(self, message: str):
    super().__init__(message, ErrorCode.UNSUPPORTED)


class EmptyTransaction:
  """A transaction that does nothing. Neither backend supports atomicity."""

  async def commit(self):
    pass

  async def __aenter__(self):
    return self

  async def __aexit__(self, exc_type, exc_val, exc_tb):
    pass


EMPTY_TRANSACTION = EmptyTransaction()


def check_deletable(full_paths: Iterable[str]) -> List[str]:
  """Refuse to delete the storage root, it would empty the whole store.

  Args:
      full_paths (Iterable[str]): The blob paths.

  Raises:
      UnsupportedOperationError: When one of the paths is the root.

  Returns:
      List[str]: The paths.
  """
  full_paths = list(full_paths)
  if any(is_root_path(full_path) for full_path in full_paths):
    raise UnsupportedOperationError("Deleting the storage root is not supported")
  return full_paths


class BlobStorage:
  """
  This service provides blob-related operations. It is an abstraction layer
  over different storage backends such as S3 or FTP.
  """

  async def list(self, options: Optional[ListOptions] = None) -> List[Blob]:
    """List the blobs matching the options.

    Args:
        options (ListOptions, optional): The query. Defaults to the root folder, non recursive, no cap.

    Returns:
        List[Blob]: The blobs found.
    """
    raise NotImplementedError

  async def read(self, full_path: str) -> Any:
    """Open a blob for reading.

    Args:
        full_path (str): The blob path.

    Returns:
        Any: A stream with an async read(), or None if the blob does not exist.
    """
    raise NotImplementedError

  async def write(self, full_path: str, data: Any, append: bool = False):
    """Write a blob.

    Args:
        full_path (str): The blob path.
        data (Any): Bytes, a binary file-like object or an object with an async read().
        append (bool, optional): Append to the existing blob. Always unsupported. Defaults to False.
    """
    raise NotImplementedError

  async def delete(self, full_paths: Iterable[str]):
    """Delete blobs, missing ones are ignored.

    Args:
        full_paths (Iterable[str]): The blob paths.
    """
    raise NotImplementedError

  async def exists(self, full_paths: Iterable[str]) -> List[bool]:
    """Check blobs exist.

    Args:
        full_paths (Iterable[str]): The blob paths.

    Returns:
        List[bool]: One flag per path, in input order.
    """
    raise NotImplementedError

  async def get(self, full_paths: Iterable[str]) -> List[Optional[Blob]]:
    """Get blobs with their attributes.

    Args:
        full_paths (Iterable[str]): The blob paths.

    Returns:
        List[Optional[Blob]]: One blob (None if missing) per path, in input order.
    """
    raise NotImplementedError

  async def set_metadata(self, blobs: Iterable[Blob]):
    """Replace the user metadata of existing blobs.

    Args:
        blobs (Iterable[Blob]): The blobs carrying the new metadata.
    """
    raise NotImplementedError

  async def open_transaction(self) -> EmptyTransaction:
    return EMPTY_TRANSACTION

  async def close(self):
    pass

  async def __aenter__(self):
    return self

  async def __aexit__(self, exc_type, exc_val, exc_tb):
    await self.close()

  #
  # Single blob helpers
  #

  async def read_bytes(self, full_path: str) -> Optional[bytes]:
    stream = await self.read(full_path)
    if stream is None:
      return None
    try:
      return await read_all(stream)
    finally:
      close = getattr(stream, "close", None)
      if close is not None:
        result = close()
        if hasattr(result, "__await__"):
          await result

  async def write_bytes(self, full_path: str, data: bytes):
    await self.write(full_path, data)

  async def exists_one(self, full_path: str) -> bool:
    return (await self.exists([full_path]))[0]

  async def get_one(self, full_path: str) -> Optional[Blob]:
    return (await self.get([full_path]))[0]

  async def delete_one(self, full_path: str):
    await self.delete([full_path])
