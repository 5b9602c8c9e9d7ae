import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from ..models.blobs import Blob, BlobItemKind, ListOptions

# S3 prepends all user metadata headers with this prefix
META_HEADER_PREFIX = "x-amz-meta-"

# Number of head requests sent together when enriching a listing
METADATA_BATCH_SIZE = 10


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC, naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def strip_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip('"') if etag else None


def strip_metadata_prefix(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Convert S3 user metadata to blob metadata.

    Args:
        metadata (Dict[str, str]): The metadata as returned by S3.

    Returns:
        Dict[str, str]: Lower case keys, without the header prefix.
    """
    result = {}
    for key, value in (metadata or {}).items():
        key = key.lower()
        if key.startswith(META_HEADER_PREFIX):
            key = key[len(META_HEADER_PREFIX):]
        result[key] = value
    return result


def to_metadata_headers(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Convert blob metadata to the S3 Metadata parameter.

    botocore adds the header prefix on the wire, so any prefix is stripped here to avoid doubling it.
    """
    return strip_metadata_prefix(metadata)


def object_to_blob(obj: Dict[str, Any], full_path: str) -> Blob:
    """Make a blob from an entry of a list_objects_v2 page.

    Args:
        obj (Dict[str, Any]): The S3 object description.
        full_path (str): The user path of the blob.

    Returns:
        Blob: The file blob.
    """
    blob = Blob(
        full_path=full_path,
        kind=BlobItemKind.FILE,
        size=obj.get("Size"),
        content_hash=strip_etag(obj.get("ETag")),
        last_modification_time=to_utc(obj.get("LastModified")))
    if "StorageClass" in obj:
        blob.properties["StorageClass"] = obj["StorageClass"]
    if "ETag" in obj:
        blob.properties["ETag"] = obj["ETag"]
    return blob


def head_to_blob(response: Optional[Dict[str, Any]], full_path: str) -> Optional[Blob]:
    """Make a blob from a head_object response.

    Args:
        response (Dict[str, Any]): The head_object response.
        full_path (str): The user path of the blob.

    Returns:
        Optional[Blob]: The file blob with its metadata, None if there is no response.
    """
    if response is None:
        return None
    blob = Blob(
        full_path=full_path,
        kind=BlobItemKind.FILE,
        size=response.get("ContentLength"),
        content_hash=strip_etag(response.get("ETag")),
        last_modification_time=to_utc(response.get("LastModified")),
        metadata=strip_metadata_prefix(response.get("Metadata")))
    if "ETag" in response:
        blob.properties["ETag"] = response["ETag"]
    return blob


def page_to_blobs(page: Dict[str, Any], options: ListOptions, to_user_path: Callable[[str], str]) -> List[Blob]:
    """Convert a list_objects_v2 page into blobs.

    Folder marker keys are skipped, files go through the name prefix and browse filters,
    common prefixes become folders unconditionally.

    Args:
        page (Dict[str, Any]): The list_objects_v2 response.
        options (ListOptions): The listing options.
        to_user_path (Callable[[str], str]): Maps an S3 key to a user path.

    Returns:
        List[Blob]: The files then the folders of the page.
    """
    blobs = []
    for obj in page.get("Contents", []):
        key = obj["Key"]
        if key.endswith("/"):
            continue
        blob = object_to_blob(obj, to_user_path(key))
        if options.is_match(blob) and options.is_accepted(blob):
            blobs.append(blob)
    for common_prefix in page.get("CommonPrefixes", []):
        blobs.append(Blob(full_path=to_user_path(common_prefix["Prefix"]), kind=BlobItemKind.FOLDER))
    return blobs


def add_metadata(blob: Blob, metadata: Optional[Dict[str, str]]):
    blob.metadata.update(strip_metadata_prefix(metadata))


async def _append_blob_metadata(client, bucket: str, blob: Blob, to_key: Callable[[str], str]):
    response = await client.head_object(Bucket=bucket, Key=to_key(blob.full_path))
    add_metadata(blob, response.get("Metadata"))


async def append_metadata(client, bucket: str, blobs: Iterable[Blob], to_key: Callable[[str], str]):
    """Fetch the user metadata of listed files, folders are skipped.

    Requests are sent in batches, concurrently within each batch.

    Args:
        client: The S3 client.
        bucket (str): The bucket name.
        blobs (Iterable[Blob]): The blobs to enrich in place.
        to_key (Callable[[str], str]): Maps a user path to an S3 key.
    """
    files = [blob for blob in blobs if blob.is_file]
    for start in range(0, len(files), METADATA_BATCH_SIZE):
        batch = files[start:start + METADATA_BATCH_SIZE]
        await asyncio.gather(*[_append_blob_metadata(client, bucket, blob, to_key) for blob in batch])


async def update_metadata(client, bucket: str, blob: Blob, key: str):
    """Replace the user metadata of an object by copying it onto itself.

    Args:
        client: The S3 client.
        bucket (str): The bucket name.
        blob (Blob): The blob carrying the full new metadata set.
        key (str): The S3 key of the object.
    """
    await client.copy_object(
        Bucket=bucket,
        Key=key,
        CopySource={'Bucket': bucket, 'Key': key},
        Metadata=to_metadata_headers(blob.metadata),
        MetadataDirective="REPLACE")
    logging.info(f"Metadata replaced path : {bucket}/{key}")
