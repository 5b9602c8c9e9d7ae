from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional
from pydantic import BaseModel, Field, field_validator
from ..utils.paths import normalize, get_name, get_parent, PATH_SEPARATOR


class BlobItemKind(str, Enum):
  FILE = "File"
  FOLDER = "Folder"


class Blob(BaseModel):
  full_path: str
  kind: BlobItemKind = BlobItemKind.FILE
  size: Optional[int] = None
  last_modification_time: Optional[datetime] = None
  content_hash: Optional[str] = None
  metadata: Dict[str, str] = Field(default_factory=dict)
  properties: Dict[str, Any] = Field(default_factory=dict)

  @field_validator("full_path")
  @classmethod
  def _normalize_full_path(cls, value: str) -> str:
    return normalize(value)

  @property
  def name(self) -> str:
    return get_name(self.full_path)

  @property
  def folder_path(self) -> Optional[str]:
    return get_parent(self.full_path)

  @property
  def is_file(self) -> bool:
    return self.kind == BlobItemKind.FILE

  @property
  def is_folder(self) -> bool:
    return self.kind == BlobItemKind.FOLDER

  def __str__(self) -> str:
    return f"{self.kind.value.lower()}: {self.full_path}"


class ListOptions(BaseModel):
  """Query parameters of a blob listing.

  A missing options argument lists the root folder, non recursively, without cap.
  """
  folder_path: str = PATH_SEPARATOR
  file_prefix: Optional[str] = None
  recurse: bool = False
  max_results: Optional[int] = None
  include_attributes: bool = False
  browse_filter: Optional[Callable[[Blob], bool]] = None

  @field_validator("file_prefix")
  @classmethod
  def _check_file_prefix(cls, value: Optional[str]) -> Optional[str]:
    if value is not None and PATH_SEPARATOR in value:
      raise ValueError(f"File prefix '{value}' cannot contain '{PATH_SEPARATOR}'")
    return value

  @field_validator("max_results")
  @classmethod
  def _check_max_results(cls, value: Optional[int]) -> Optional[int]:
    if value is not None and value < 0:
      raise ValueError("Max results cannot be negative")
    return value

  def is_match(self, blob: Blob) -> bool:
    """Check the blob name against the file prefix filter."""
    return self.file_prefix is None or blob.name.startswith(self.file_prefix)

  def is_accepted(self, blob: Blob) -> bool:
    """Check the blob against the caller's browse filter."""
    return self.browse_filter is None or bool(self.browse_filter(blob))

  def is_full(self, count: int) -> bool:
    """Check whether a collection of the given size has reached the cap."""
    return self.max_results is not None and count >= self.max_results
