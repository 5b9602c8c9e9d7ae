from .blobs import BlobStorage, StorageError, BlobNotFoundError, UnsupportedOperationError, ErrorCode, EmptyTransaction, EMPTY_TRANSACTION
from ..models.blobs import Blob, BlobItemKind, ListOptions
from .s3 import S3BlobStorage, S3Error
from .ftp import FtpBlobStorage, FtpSession, FtpReadStream
from .factory import create_blob_storage
