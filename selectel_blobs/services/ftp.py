from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from io import BytesIO
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Tuple
from ..models.blobs import Blob, BlobItemKind, ListOptions
from ..utils.paths import from_absolute, get_parent, normalize, to_absolute
from ..utils.streams import DEFAULT_CHUNK_SIZE, is_async_readable, iter_chunks, read_all
from .blobs import BlobStorage, UnsupportedOperationError, check_deletable
import aioftp
import asyncio
import logging

# Reply code of a file action not taken, e.g. the file does not exist
FILE_UNAVAILABLE_CODE = "550"

# Service not available, the server is closing the control connection
CONNECTION_LOST_CODE = "421"

# Retries of a failed upload, on top of the first attempt
WRITE_RETRIES = 3

ENTRY_KINDS = {
    "file": BlobItemKind.FILE,
    "dir": BlobItemKind.FOLDER,
}


class DeleteFailure(Enum):
    NOT_FOUND_AS_FILE = "not_found_as_file"
    OTHER = "other"


def has_reply_code(error: aioftp.StatusCodeError, code: str) -> bool:
    return any(str(received) == code for received in error.received_codes)


def is_connection_lost(error: Exception) -> bool:
    """Tell whether an error leaves the control connection unusable."""
    if isinstance(error, aioftp.StatusCodeError):
        return has_reply_code(error, CONNECTION_LOST_CODE)
    return isinstance(error, OSError)


def classify_delete_error(error: Exception) -> DeleteFailure:
    """Tell whether a failed file delete means the path is not a file.

    Args:
        error (Exception): The error raised by the file delete.

    Returns:
        DeleteFailure: NOT_FOUND_AS_FILE for a 550 reply, OTHER otherwise.
    """
    if isinstance(error, aioftp.StatusCodeError) and has_reply_code(error, FILE_UNAVAILABLE_CODE):
        return DeleteFailure.NOT_FOUND_AS_FILE
    return DeleteFailure.OTHER


def parse_modify(value: Optional[str]) -> Optional[datetime]:
    """Parse a listing timestamp (YYYYMMDDHHMMSS[.sss], UTC)."""
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        logging.debug(f"Unparsable modification time : {value}")
        return None


class FtpReadStream(object):
    """Content of a downloaded FTP file, with the same async read() as S3 bodies."""

    def __init__(self, content: bytes):
        self._buffer = BytesIO(content)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    def close(self):
        self._buffer.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FtpSession(object):
    """A single passive-mode FTP connection, opened on first use and reused.

    Operations are serialized, the connection cannot run two commands at once.
    """

    def __init__(self, host: str, user: str, password: str, port: int = 21, owns_connection: bool = False,
                 client: Optional[aioftp.Client] = None):
        """Initiate the FTP session.

        Args:
            host (str): The FTP server host.
            user (str): The login user.
            password (str): The login password.
            port (int, optional): The FTP server port. Defaults to 21.
            owns_connection (bool, optional): Whether close() quits the connection. Defaults to False.
            client (aioftp.Client, optional): An existing client, a passive-mode one is made otherwise.
        """
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.owns_connection = owns_connection
        self.client = client if client is not None else aioftp.Client(passive_commands=("pasv",))
        self.connected = False
        self._lock = asyncio.Lock()

    async def _ensure_connected(self) -> aioftp.Client:
        if not self.connected:
            await self.client.connect(self.host, self.port)
            await self.client.login(self.user, self.password)
            self.connected = True
            logging.debug(f"FTP connected : {self.user}@{self.host}:{self.port}")
        return self.client

    def _drop_connection(self):
        self.connected = False
        self.client.close()
        logging.warning(f"FTP connection lost : {self.user}@{self.host}:{self.port}")

    @asynccontextmanager
    async def _connection(self):
        """Hold the connected client for one operation.

        A lost connection is dropped so that the next operation reconnects.
        """
        async with self._lock:
            client = await self._ensure_connected()
            try:
                yield client
            except Exception as e:
                if is_connection_lost(e):
                    self._drop_connection()
                raise

    async def list(self, path: str) -> List[Tuple[PurePosixPath, Dict[str, Any]]]:
        async with self._connection() as client:
            return list(await client.list(path))

    async def exists(self, path: str) -> bool:
        async with self._connection() as client:
            return await client.exists(path)

    async def delete(self, path: str):
        """Delete a file, or a directory when the path is not a file.

        Args:
            path (str): The absolute path on the server.
        """
        async with self._connection() as client:
            try:
                await client.remove_file(path)
                logging.info(f"File deleted path : ftp://{self.host}{path}")
                return
            except aioftp.StatusCodeError as e:
                if classify_delete_error(e) != DeleteFailure.NOT_FOUND_AS_FILE:
                    raise
            if not await client.exists(path):
                logging.debug(f"Nothing to delete at path : ftp://{self.host}{path}")
                return
            await client.remove(path)
            logging.info(f"Folder deleted path : ftp://{self.host}{path}")

    async def read(self, path: str) -> Optional[FtpReadStream]:
        """Download a file.

        Args:
            path (str): The absolute path on the server.

        Returns:
            Optional[FtpReadStream]: The content, None if the file does not exist.
        """
        async with self._connection() as client:
            try:
                stream = await client.download_stream(path)
            except aioftp.StatusCodeError as e:
                if has_reply_code(e, FILE_UNAVAILABLE_CODE):
                    return None
                raise
            chunks = []
            async for block in stream.iter_by_block(DEFAULT_CHUNK_SIZE):
                chunks.append(block)
            await stream.finish()
            return FtpReadStream(b"".join(chunks))

    async def write(self, path: str, data: Any):
        """Upload a file in chunks, retrying on FTP protocol and connection failures.

        Each attempt reconnects first if the previous one lost the connection.

        Args:
            path (str): The absolute path on the server.
            data (Any): Bytes, a binary file-like object or an object with an async read().
        """
        if is_async_readable(data) or not (hasattr(data, "seek") or isinstance(data, (bytes, bytearray))):
            # cannot rewind, buffer once for the retries
            data = await read_all(data)
        start = data.tell() if hasattr(data, "tell") else 0
        for attempt in range(WRITE_RETRIES + 1):
            if hasattr(data, "seek"):
                data.seek(start)
            try:
                async with self._connection() as client:
                    async with client.upload_stream(path) as stream:
                        async for chunk in iter_chunks(data, DEFAULT_CHUNK_SIZE):
                            await stream.write(chunk)
                logging.info(f"File uploaded path : ftp://{self.host}{path}")
                return
            except (aioftp.StatusCodeError, OSError) as e:
                if attempt >= WRITE_RETRIES:
                    raise
                logging.warning(f"Upload of {path} failed with {e}, retrying... "
                                f"(attempt {attempt + 1}/{WRITE_RETRIES})")

    async def close(self):
        """Quit the connection, only when this session owns it."""
        if not self.owns_connection or not self.connected:
            return
        async with self._lock:
            await self.client.quit()
            self.connected = False
            logging.debug(f"FTP disconnected : {self.user}@{self.host}:{self.port}")


class FtpBlobStorage(BlobStorage):
  """
  This service provides blob-related operations on a passive-mode FTP server.
  """

  def __init__(self, session: FtpSession, prefix: str = ""):
    """Initialize the blob storage.

    Args:
        session (FtpSession): The FTP session.
        prefix (str, optional): The root folder of the storage on the server. Defaults to "".
    """
    self.session = session
    self.prefix = (prefix or "").strip("/")

  def to_absolute(self, full_path: str) -> str:
    return to_absolute(full_path, self.prefix)

  def from_absolute(self, full_name: str) -> str:
    return normalize(from_absolute(full_name, self.prefix))

  def to_blob(self, path: PurePosixPath, info: Dict[str, Any]) -> Optional[Blob]:
    """Convert a listing entry, only files and directories are kept.

    Args:
        path (PurePosixPath): The absolute path on the server.
        info (Dict[str, Any]): The listing facts.

    Returns:
        Optional[Blob]: The blob, None for other entry types.
    """
    kind = ENTRY_KINDS.get(info.get("type"))
    if kind is None:
      return None
    size = info.get("size")
    blob = Blob(
      full_path=self.from_absolute(str(path)),
      kind=kind,
      size=int(size) if size is not None else None,
      last_modification_time=parse_modify(info.get("modify")))
    permissions = info.get("unix.mode")
    if permissions is not None:
      blob.properties["RawPermissions"] = permissions
    return blob

  async def list(self, options: Optional[ListOptions] = None) -> List[Blob]:
    """List the blobs of one folder. FTP has no pagination, the listing is fetched then capped.

    Args:
        options (ListOptions, optional): The query. Defaults to the root folder, no cap.

    Returns:
        List[Blob]: The blobs found.
    """
    options = options or ListOptions()
    entries = await self.session.list(self.to_absolute(options.folder_path))
    blobs = []
    for path, info in entries:
      if options.is_full(len(blobs)):
        break
      if options.file_prefix is not None and not path.name.startswith(options.file_prefix):
        continue
      blob = self.to_blob(path, info)
      if blob is None or not options.is_accepted(blob):
        continue
      blobs.append(blob)
    return blobs

  async def read(self, full_path: str) -> Optional[FtpReadStream]:
    return await self.session.read(self.to_absolute(full_path))

  async def write(self, full_path: str, data: Any, append: bool = False):
    if append:
      raise UnsupportedOperationError("FTP storage does not support appending to a blob")
    await self.session.write(self.to_absolute(full_path), data)

  async def delete(self, full_paths: Iterable[str]):
    for full_path in check_deletable(full_paths):
      await self.session.delete(self.to_absolute(full_path))

  async def exists(self, full_paths: Iterable[str]) -> List[bool]:
    results = []
    for full_path in full_paths:
      results.append(await self.session.exists(self.to_absolute(full_path)))
    return results

  async def get(self, full_paths: Iterable[str]) -> List[Optional[Blob]]:
    """Get blobs by listing their parent folder, there is no stat by path.

    Args:
        full_paths (Iterable[str]): The blob paths.

    Returns:
        List[Optional[Blob]]: One blob (None if missing) per path, in input order.
    """
    results = []
    for full_path in full_paths:
      path = self.to_absolute(full_path)
      parent = get_parent(path)
      entry = None
      if parent is not None:
        try:
          entries = await self.session.list(parent)
        except aioftp.StatusCodeError as e:
          # the parent folder does not exist
          if not has_reply_code(e, FILE_UNAVAILABLE_CODE):
            raise
          entries = []
        entry = next(((p, info) for p, info in entries if normalize(str(p)) == path), None)
      results.append(self.to_blob(*entry) if entry is not None else None)
    return results

  async def set_metadata(self, blobs: Iterable[Blob]):
    raise UnsupportedOperationError("FTP storage does not support blob metadata")

  async def close(self):
    await self.session.close()
