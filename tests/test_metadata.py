import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock
from selectel_blobs.models.blobs import Blob, BlobItemKind, ListOptions
from selectel_blobs.utils.metadata import (
    strip_metadata_prefix, to_metadata_headers, object_to_blob, head_to_blob,
    page_to_blobs, append_metadata, update_metadata, to_utc, METADATA_BATCH_SIZE,
)


def identity_path(key):
    return "/" + key


class TestMetadataConversion:
    """Test suite for S3 metadata conversion."""

    def test_strip_prefix_and_lower_case(self):
        """Test that the header prefix is removed and keys lower cased."""
        metadata = {"x-amz-meta-Author": "me", "Project": "p1", "X-AMZ-META-k": "v"}
        assert strip_metadata_prefix(metadata) == {"author": "me", "project": "p1", "k": "v"}

    def test_strip_prefix_none(self):
        assert strip_metadata_prefix(None) == {}

    def test_headers_do_not_double_the_prefix(self):
        assert to_metadata_headers({"x-amz-meta-k": "v", "other": "w"}) == {"k": "v", "other": "w"}

    def test_to_utc(self):
        """Test that timestamps are normalized to UTC."""
        local = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_utc(local) == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert to_utc(local).tzinfo == timezone.utc
        assert to_utc(datetime(2024, 1, 1)).tzinfo == timezone.utc
        assert to_utc(None) is None

    def test_object_to_blob(self):
        modified = datetime(2024, 1, 2, tzinfo=timezone.utc)
        obj = {"Key": "a/b.txt", "Size": 10, "ETag": '"abc"', "LastModified": modified, "StorageClass": "STANDARD"}
        blob = object_to_blob(obj, "/a/b.txt")
        assert blob.full_path == "/a/b.txt"
        assert blob.kind == BlobItemKind.FILE
        assert blob.size == 10
        assert blob.content_hash == "abc"
        assert blob.last_modification_time == modified
        assert blob.properties == {"StorageClass": "STANDARD", "ETag": '"abc"'}

    def test_head_to_blob(self):
        response = {
            "ContentLength": 5,
            "ETag": '"d41d8"',
            "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
            "Metadata": {"k": "v"},
        }
        blob = head_to_blob(response, "/x.bin")
        assert blob.size == 5
        assert blob.content_hash == "d41d8"
        assert blob.metadata == {"k": "v"}
        assert blob.properties["ETag"] == '"d41d8"'

    def test_head_to_blob_none(self):
        assert head_to_blob(None, "/x") is None


class TestPageToBlobs:
    """Test suite for list_objects_v2 page conversion."""

    page = {
        "Contents": [
            {"Key": "a/", "Size": 0},
            {"Key": "a/one.txt", "Size": 1},
            {"Key": "a/two.csv", "Size": 2},
        ],
        "CommonPrefixes": [{"Prefix": "a/sub/"}],
    }

    def test_folder_markers_are_skipped(self):
        blobs = page_to_blobs(self.page, ListOptions(), identity_path)
        assert [b.full_path for b in blobs] == ["/a/one.txt", "/a/two.csv", "/a/sub"]
        assert blobs[-1].is_folder

    def test_file_prefix_applies_to_files_only(self):
        blobs = page_to_blobs(self.page, ListOptions(file_prefix="one"), identity_path)
        assert [b.full_path for b in blobs] == ["/a/one.txt", "/a/sub"]

    def test_browse_filter_applies_to_files_only(self):
        blobs = page_to_blobs(self.page, ListOptions(browse_filter=lambda b: False), identity_path)
        assert [b.full_path for b in blobs] == ["/a/sub"]

    def test_empty_page(self):
        assert page_to_blobs({}, ListOptions(), identity_path) == []


class TestMetadataRequests:
    """Test suite for metadata enrichment and replacement requests."""

    @pytest.mark.asyncio
    async def test_append_metadata_skips_folders(self):
        client = MagicMock()
        client.head_object = AsyncMock(return_value={"Metadata": {"x-amz-meta-k": "v"}})
        blobs = [Blob(full_path="/f.txt"), Blob(full_path="/dir", kind=BlobItemKind.FOLDER)]
        await append_metadata(client, "b", blobs, lambda p: p.lstrip("/"))
        client.head_object.assert_called_once_with(Bucket="b", Key="f.txt")
        assert blobs[0].metadata == {"k": "v"}
        assert blobs[1].metadata == {}

    @pytest.mark.asyncio
    async def test_append_metadata_in_batches(self):
        client = MagicMock()
        client.head_object = AsyncMock(return_value={"Metadata": {}})
        blobs = [Blob(full_path=f"/f{i}") for i in range(METADATA_BATCH_SIZE * 2 + 3)]
        await append_metadata(client, "b", blobs, lambda p: p.lstrip("/"))
        assert client.head_object.call_count == len(blobs)

    @pytest.mark.asyncio
    async def test_update_metadata_copies_with_replace(self):
        client = MagicMock()
        client.copy_object = AsyncMock(return_value={})
        blob = Blob(full_path="/a.txt", metadata={"k": "v"})
        await update_metadata(client, "b", blob, "a.txt")
        client.copy_object.assert_called_once_with(
            Bucket="b",
            Key="a.txt",
            CopySource={'Bucket': "b", 'Key': "a.txt"},
            Metadata={"k": "v"},
            MetadataDirective="REPLACE")
