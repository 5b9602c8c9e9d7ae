from typing import Dict, Optional, Tuple
from pydantic import BaseModel
from .blobs import BlobStorage
from .ftp import FtpBlobStorage, FtpSession
from .s3 import S3BlobStorage

S3_PREFIX = "selectel"
FTP_PREFIX = "selectelftp"

SELECTEL_SERVICE_URL = "https://s3.selcdn.ru"
SELECTEL_FTP_HOST = "ftp.selcdn.ru"

REQUIRED_PARAMETERS = ("username", "password", "bucket")


class S3StorageSettings(BaseModel):
  username: str
  password: str
  bucket: str
  service_url: str = SELECTEL_SERVICE_URL
  region: str = "us-east-1"
  path_prefix: str = ""


class FtpStorageSettings(BaseModel):
  username: str
  password: str
  bucket: str
  host: str = SELECTEL_FTP_HOST
  port: int = 21


def parse_connection_string(connection_string: str) -> Tuple[str, Dict[str, str]]:
  """Split a connection string such as "selectel://username=u;password=p;bucket=b".

  Args:
      connection_string (str): The connection string.

  Returns:
      Tuple[str, Dict[str, str]]: The prefix and the parameters.
  """
  if "://" not in connection_string:
    raise ValueError(f"Connection string must look like 'prefix://key=value;...', got '{connection_string}'")
  prefix, rest = connection_string.split("://", 1)
  parameters = {}
  for pair in rest.split(";"):
    if not pair.strip():
      continue
    if "=" not in pair:
      raise ValueError(f"Invalid connection string parameter '{pair}'")
    key, value = pair.split("=", 1)
    parameters[key.strip().lower()] = value.strip()
  missing = [name for name in REQUIRED_PARAMETERS if not parameters.get(name)]
  if missing:
    raise ValueError(f"Connection string is missing required parameters: {', '.join(missing)}")
  return prefix.strip().lower(), parameters


def create_s3_storage(settings: S3StorageSettings) -> S3BlobStorage:
  return S3BlobStorage(
    s3_endpoint_url=settings.service_url,
    s3_access_key_id=settings.username,
    s3_secret_access_key=settings.password,
    bucket=settings.bucket,
    region=settings.region,
    path_prefix=settings.path_prefix)


def create_ftp_storage(settings: FtpStorageSettings) -> FtpBlobStorage:
  session = FtpSession(settings.host, settings.username, settings.password, port=settings.port, owns_connection=True)
  return FtpBlobStorage(session, prefix=settings.bucket)


def create_blob_storage(connection_string: str) -> Optional[BlobStorage]:
  """Make the blob storage a connection string designates.

  Args:
      connection_string (str): The connection string.

  Returns:
      Optional[BlobStorage]: The storage, None when the string is not a connection string with a known prefix.
  """
  if "://" not in connection_string:
    return None
  if connection_string.split("://", 1)[0].strip().lower() not in (S3_PREFIX, FTP_PREFIX):
    return None
  prefix, parameters = parse_connection_string(connection_string)
  if prefix == S3_PREFIX:
    return create_s3_storage(S3StorageSettings(**parameters))
  return create_ftp_storage(FtpStorageSettings(**parameters))
