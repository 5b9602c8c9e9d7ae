from typing import Any, Iterable, List, Optional
from contextlib import AsyncExitStack
from aiobotocore.session import get_session
from botocore.config import Config
from botocore.exceptions import ClientError
from ..models.blobs import Blob, ListOptions
from ..utils.metadata import append_metadata, head_to_blob, update_metadata
from ..utils.paths import from_absolute, to_absolute, PATH_SEPARATOR
from ..utils.streams import read_all
from .blobs import BlobStorage, StorageError, UnsupportedOperationError, check_deletable
from .browser import S3DirectoryBrowser
import asyncio
import logging

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")
BUCKET_EXISTS_CODES = ("BucketAlreadyOwnedByYou", "BucketAlreadyExists", "Conflict")


class S3Error(StorageError):
    """Exception raised when managing S3 blobs."""
    pass


def error_code(ex: ClientError) -> str:
    return str(ex.response.get("Error", {}).get("Code", ""))


def status_code(ex: ClientError) -> Optional[int]:
    return ex.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_not_found(ex: ClientError) -> bool:
    return error_code(ex) in NOT_FOUND_CODES or status_code(ex) == 404


def is_bucket_exists(ex: ClientError) -> bool:
    return error_code(ex) in BUCKET_EXISTS_CODES or status_code(ex) == 409


class S3BlobStorage(BlobStorage):

    def __init__(self, s3_endpoint_url: str, s3_access_key_id: str, s3_secret_access_key: str, bucket: str,
                 region: str = "us-east-1", path_prefix: str = "", with_checksums: bool = False):
        """Initiate the S3 blob storage.

        Args:
            s3_endpoint_url (str): The endpoint URL of the S3 service.
            s3_access_key_id (str): The access key ID for S3 authentication.
            s3_secret_access_key (str): The secret access key for S3 authentication.
            bucket (str): The name of the S3 bucket, created on first use if missing.
            region (str, optional): The region of the S3 service. Defaults to "us-east-1".
            path_prefix (str, optional): The prefix path within the S3 bucket. Defaults to "".
            with_checksums (bool, optional): Whether to enable checksum handling. When False (default),
            checksum use is disabled for compatibility with S3-compatible services that do not support checksums.
        """
        if s3_access_key_id is None:
            raise ValueError("s3_access_key_id is required")
        if s3_secret_access_key is None:
            raise ValueError("s3_secret_access_key is required")
        self.s3_endpoint_url = s3_endpoint_url
        self.s3_access_key_id = s3_access_key_id
        self.s3_secret_access_key = s3_secret_access_key
        self.region = region
        self.bucket = bucket
        self.path_prefix = (path_prefix or "").strip(PATH_SEPARATOR)
        self.with_checksums = with_checksums
        self._client = None
        self._exit_stack: Optional[AsyncExitStack] = None
        self._initialised = False
        self._init_lock = asyncio.Lock()

    def to_s3_key(self, full_path: str) -> str:
        """Make a user path a valid S3 key under the path prefix.

        Args:
            full_path (str): The path of the blob.

        Returns:
            str: The S3 key, without leading separator.
        """
        return to_absolute(full_path, self.path_prefix).lstrip(PATH_SEPARATOR)

    def from_s3_key(self, key: str) -> str:
        """Make an S3 key a user path, the path prefix is removed.

        Args:
            key (str): The S3 key.

        Returns:
            str: The user path of the blob.
        """
        return from_absolute(PATH_SEPARATOR + key, self.path_prefix)

    async def list(self, options: Optional[ListOptions] = None) -> List[Blob]:
        """List blobs, optionally recursively and with their user metadata.

        Args:
            options (ListOptions, optional): The query. Defaults to the root folder, non recursive, no cap.

        Returns:
            List[Blob]: The blobs found.
        """
        options = options or ListOptions()
        client = await self._get_client()
        browser = self._create_browser(client)
        blobs = await browser.list(options)
        if options.include_attributes:
            await append_metadata(client, self.bucket, blobs, self.to_s3_key)
        return blobs

    async def write(self, full_path: str, data: Any, append: bool = False):
        """Upload a blob. S3 has no append: the whole content is buffered and put at once.

        Args:
            full_path (str): Path of the blob.
            data (Any): Bytes, a binary file-like object or an object with an async read().
            append (bool, optional): Not supported. Defaults to False.

        Raises:
            UnsupportedOperationError: When append is requested.
        """
        if append:
            raise UnsupportedOperationError("S3 does not support appending to a blob")
        key = self.to_s3_key(full_path)
        body = await read_all(data)
        client = await self._get_client()
        await client.put_object(Bucket=self.bucket, Key=key, Body=body)
        logging.info(f"File uploaded path : {self.s3_endpoint_url}/{self.bucket}/{key}")

    async def read(self, full_path: str) -> Any:
        """Open a blob for reading.

        Args:
            full_path (str): Path of the blob.

        Raises:
            S3Error: When S3 fails for another reason than a missing key.

        Returns:
            Any: The streaming body, None if the blob does not exist.
        """
        key = self.to_s3_key(full_path)
        client = await self._get_client()
        try:
            response = await client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise S3Error(f"Failed to read {self.bucket}/{key}: {error_code(e)}") from e
        return response["Body"]

    async def delete(self, full_paths: Iterable[str]):
        """Delete blobs, recursively when they are folders.

        Args:
            full_paths (Iterable[str]): Paths of the blobs.

        Raises:
            UnsupportedOperationError: When one of the paths is the storage root.
        """
        full_paths = check_deletable(full_paths)
        client = await self._get_client()
        await asyncio.gather(*[self._delete(client, full_path) for full_path in full_paths])

    async def exists(self, full_paths: Iterable[str]) -> List[bool]:
        """Check blobs exist in S3 storage.

        Args:
            full_paths (Iterable[str]): Paths of the blobs.

        Returns:
            List[bool]: One flag per path, in input order.
        """
        client = await self._get_client()
        return list(await asyncio.gather(*[self._exists(client, full_path) for full_path in full_paths]))

    async def get(self, full_paths: Iterable[str]) -> List[Optional[Blob]]:
        """Get blobs with their size, timestamp, content hash and user metadata.

        Args:
            full_paths (Iterable[str]): Paths of the blobs.

        Returns:
            List[Optional[Blob]]: One blob (None if missing) per path, in input order.
        """
        client = await self._get_client()
        return list(await asyncio.gather(*[self._get(client, full_path) for full_path in full_paths]))

    async def set_metadata(self, blobs: Iterable[Blob]):
        """Replace the user metadata of blobs, by copying each object onto itself.

        Args:
            blobs (Iterable[Blob]): The blobs carrying the new metadata.
        """
        client = await self._get_client()
        for blob in blobs:
            if blob is None or blob.metadata is None:
                continue
            await update_metadata(client, self.bucket, blob, self.to_s3_key(blob.full_path))

    async def close(self):
        """Release the S3 client, if any."""
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None
        self._initialised = False

    #
    # Private methods
    #

    async def _delete(self, client, full_path: str):
        key = self.to_s3_key(full_path)
        await client.delete_object(Bucket=self.bucket, Key=key)
        logging.info(f"File deleted path : {self.s3_endpoint_url}/{self.bucket}/{key}")
        await self._create_browser(client).delete_recursive(full_path)

    async def _exists(self, client, full_path: str) -> bool:
        key = self.to_s3_key(full_path)
        try:
            await client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

    async def _get(self, client, full_path: str) -> Optional[Blob]:
        key = self.to_s3_key(full_path)
        try:
            response = await client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        return head_to_blob(response, self.from_s3_key(key))

    def _create_browser(self, client) -> S3DirectoryBrowser:
        return S3DirectoryBrowser(client, self.bucket, self.path_prefix)

    async def _get_client(self):
        """Get the S3 client, creating it and the bucket on first use.

        Concurrent first calls wait for a single initialization.

        Returns:
            Any: The S3 client.
        """
        async with self._init_lock:
            if self._client is None:
                self._exit_stack = AsyncExitStack()
                self._client = await self._exit_stack.enter_async_context(self._create_client())
            if not self._initialised:
                await self._ensure_bucket(self._client)
                self._initialised = True
        return self._client

    async def _ensure_bucket(self, client):
        try:
            await client.create_bucket(Bucket=self.bucket)
            logging.info(f"Bucket created : {self.s3_endpoint_url}/{self.bucket}")
        except ClientError as e:
            if not is_bucket_exists(e):
                raise

    def _create_client(self):
        """Create an S3 client using the provided credentials and endpoint URL.

        Returns:
            Any: The S3 client context manager.
        """
        settings = {
            'payload_signing_enabled': False,
            'use_accelerate_endpoint': False,
            'addressing_style': 'path'
        }
        if not self.with_checksums:
            # Completely disable checksums for S3-compatible services that don't support them
            settings['checksum_mode'] = 'DISABLED'
            settings['request_checksum_calculation'] = 'when_required'
            settings['response_checksum_validation'] = 'when_required'
        config = Config(
            s3=settings,
            signature_version='s3v4',
            disable_request_compression=True
        )

        session = get_session()
        return session.create_client(
            's3',
            region_name=self.region,
            endpoint_url=self.s3_endpoint_url,
            aws_secret_access_key=self.s3_secret_access_key,
            aws_access_key_id=self.s3_access_key_id,
            config=config)
