from typing import List, Optional
from ..models.blobs import Blob, ListOptions
from ..utils.limiter import ConcurrencyLimiter, DEFAULT_MAX_CONCURRENCY
from ..utils.metadata import page_to_blobs
from ..utils.paths import format_folder_prefix, from_absolute, to_absolute, PATH_SEPARATOR
import asyncio
import logging


class S3DirectoryBrowser(object):
    """Enumerates a prefix-delimited S3 namespace as a tree of blobs.

    A browser is meant to serve one top-level call; its concurrency limiter
    only throttles the requests issued through this instance.
    """

    def __init__(self, client, bucket: str, path_prefix: str = "", max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        """Initiate the browser.

        Args:
            client: An opened S3 client.
            bucket (str): The name of the S3 bucket.
            path_prefix (str, optional): The prefix path within the S3 bucket. Defaults to "".
            max_concurrency (int, optional): Max simultaneous listing requests. Defaults to 10.
        """
        self.client = client
        self.bucket = bucket
        self.path_prefix = path_prefix.strip(PATH_SEPARATOR)
        self.limiter = ConcurrencyLimiter(max_concurrency)

    def to_key(self, full_path: str) -> str:
        return to_absolute(full_path, self.path_prefix).lstrip(PATH_SEPARATOR)

    def to_user_path(self, key: str) -> str:
        return from_absolute(PATH_SEPARATOR + key, self.path_prefix)

    async def list(self, options: ListOptions) -> List[Blob]:
        """List the blobs of a folder, optionally recursively.

        When the cap is hit while sibling folders are listed concurrently,
        which entries are kept is not deterministic.

        Args:
            options (ListOptions): The listing options.

        Returns:
            List[Blob]: At most options.max_results blobs.
        """
        container: List[Blob] = []
        await self._list_folder(container, options.folder_path, options)
        if options.max_results is not None and len(container) > options.max_results:
            return container[:options.max_results]
        return container

    async def _list_folder(self, container: List[Blob], folder_path: str, options: ListOptions):
        request = {
            'Bucket': self.bucket,
            'Delimiter': PATH_SEPARATOR,
        }
        prefix = format_folder_prefix(to_absolute(folder_path, self.path_prefix))
        if prefix is not None:
            request['Prefix'] = prefix

        folder_container: List[Blob] = []
        # every sub folder is browsed, even those the browse filter hides
        folders: List[Blob] = []
        while not options.is_full(len(container) + len(folder_container)):
            async with self.limiter.acquire_one():
                page = await self.client.list_objects_v2(**request)
            logging.debug(f"Listed page of {self.bucket}/{prefix or ''} : {page.get('KeyCount', '?')} keys")
            for blob in page_to_blobs(page, options, self.to_user_path):
                if blob.is_folder:
                    folders.append(blob)
                    if not options.is_accepted(blob):
                        continue
                folder_container.append(blob)
            token = page.get('NextContinuationToken')
            if not token:
                break
            request['ContinuationToken'] = token

        container.extend(folder_container)
        if not options.recurse:
            return
        await asyncio.gather(*[self._list_folder(container, folder.full_path, options) for folder in folders])

    async def delete_recursive(self, full_path: str):
        """Delete all the objects below a path considered as a folder.

        Args:
            full_path (str): The user path of the folder.
        """
        key = self.to_key(full_path)
        # an empty key is the storage root, everything below it goes
        folder_key = f"{key}{PATH_SEPARATOR}" if key else ""
        paginator = self.client.get_paginator('list_objects_v2')
        async for page in paginator.paginate(Bucket=self.bucket, Prefix=folder_key):
            keys = [content['Key'] for content in page.get('Contents', [])]
            await asyncio.gather(*[self._delete_object(key) for key in keys])

    async def _delete_object(self, key: str):
        await self.client.delete_object(Bucket=self.bucket, Key=key)
        logging.info(f"File deleted path : {self.bucket}/{key}")
