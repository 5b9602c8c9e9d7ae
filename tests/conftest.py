import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock
from botocore.exceptions import ClientError
from selectel_blobs.services.s3 import S3BlobStorage


def client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation)


class FakeBody:
    """Async body like aiobotocore StreamingBody."""

    def __init__(self, content: bytes):
        self.content = content
        self.offset = 0
        self.closed = False

    async def read(self, amt=None):
        end = len(self.content) if amt is None or amt < 0 else self.offset + amt
        chunk = self.content[self.offset:end]
        self.offset += len(chunk)
        return chunk

    def close(self):
        self.closed = True


class FakePaginator:

    def __init__(self, client):
        self.client = client

    async def paginate(self, **kwargs):
        token = None
        while True:
            request = dict(kwargs)
            if token:
                request["ContinuationToken"] = token
            page = self.client._list_page(**request)
            yield page
            token = page.get("NextContinuationToken")
            if not token:
                break


class FakeS3Client:
    """In-memory S3 client, pages of list_objects_v2 hold at most page_size entries."""

    def __init__(self, page_size: int = 1000):
        self.page_size = page_size
        self.buckets = set()
        self.objects = {}
        self.calls = []

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))

    def count(self, name):
        return len([call for call in self.calls if call[0] == name])

    async def create_bucket(self, Bucket):
        self._record("create_bucket", Bucket=Bucket)
        if Bucket in self.buckets:
            raise client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")
        self.buckets.add(Bucket)
        return {}

    async def put_object(self, Bucket, Key, Body, **kwargs):
        self._record("put_object", Bucket=Bucket, Key=Key, **kwargs)
        self.objects[Key] = {
            "Body": bytes(Body),
            "Metadata": {k.lower(): v for k, v in kwargs.get("Metadata", {}).items()},
            "LastModified": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "ETag": f'"etag-{len(Body)}"',
        }
        return {"ETag": self.objects[Key]["ETag"]}

    async def get_object(self, Bucket, Key):
        self._record("get_object", Bucket=Bucket, Key=Key)
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        return {"Body": FakeBody(self.objects[Key]["Body"]), "ContentLength": len(self.objects[Key]["Body"])}

    async def head_object(self, Bucket, Key):
        self._record("head_object", Bucket=Bucket, Key=Key)
        if Key not in self.objects:
            raise client_error("404", 404, "HeadObject")
        obj = self.objects[Key]
        return {
            "ContentLength": len(obj["Body"]),
            "LastModified": obj["LastModified"],
            "ETag": obj["ETag"],
            "Metadata": dict(obj["Metadata"]),
        }

    async def delete_object(self, Bucket, Key):
        self._record("delete_object", Bucket=Bucket, Key=Key)
        self.objects.pop(Key, None)
        return {}

    async def copy_object(self, Bucket, Key, CopySource, Metadata=None, MetadataDirective="COPY"):
        self._record("copy_object", Bucket=Bucket, Key=Key, CopySource=CopySource,
                     Metadata=Metadata, MetadataDirective=MetadataDirective)
        source = self.objects[CopySource["Key"]]
        copy = dict(source)
        if MetadataDirective == "REPLACE":
            copy["Metadata"] = {k.lower(): v for k, v in (Metadata or {}).items()}
        self.objects[Key] = copy
        return {}

    async def list_objects_v2(self, **kwargs):
        self._record("list_objects_v2", **kwargs)
        return self._list_page(**kwargs)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def _list_page(self, Bucket, Prefix=None, Delimiter=None, ContinuationToken=None, **kwargs):
        prefix = Prefix or ""
        entries = []
        seen_prefixes = set()
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if Delimiter and Delimiter in rest:
                common = prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if common not in seen_prefixes:
                    seen_prefixes.add(common)
                    entries.append(("prefix", common))
            else:
                entries.append(("key", key))
        # the token is the last entry of the previous page, like a start-after key
        if ContinuationToken:
            entries = [entry for entry in entries if entry[1] > ContinuationToken]
        chunk = entries[:self.page_size]
        page = {
            "KeyCount": len(chunk),
            "Contents": [
                {
                    "Key": key,
                    "Size": len(self.objects[key]["Body"]),
                    "ETag": self.objects[key]["ETag"],
                    "LastModified": self.objects[key]["LastModified"],
                    "StorageClass": "STANDARD",
                }
                for kind, key in chunk if kind == "key"
            ],
            "CommonPrefixes": [{"Prefix": p} for kind, p in chunk if kind == "prefix"],
        }
        if len(entries) > self.page_size:
            page["NextContinuationToken"] = chunk[-1][1]
        return page


@pytest.fixture
def fake_s3_client():
    """Create an in-memory S3 client with small pages."""
    return FakeS3Client(page_size=2)


@pytest.fixture
def s3_storage(fake_s3_client):
    """Create an S3BlobStorage talking to the in-memory client."""
    storage = S3BlobStorage(
        s3_endpoint_url="http://localhost:9000",
        s3_access_key_id="key",
        s3_secret_access_key="secret",
        bucket="b")
    context = MagicMock()
    context.__aenter__.return_value = fake_s3_client
    context.__aexit__.return_value = False
    storage._create_client = MagicMock(return_value=context)
    return storage
