from typing import Optional

PATH_SEPARATOR = "/"
ROOT_PATH = "/"


def normalize(path: Optional[str], remove_trailing_slash: bool = True) -> str:
    """Make a path absolute and canonical.

    Args:
        path (str): The path to normalize, absolute or relative.
        remove_trailing_slash (bool, optional): Drop the trailing separator. Defaults to True.

    Returns:
        str: The path with a leading separator and no empty, "." or ".." segments.
    """
    if not path:
        return ROOT_PATH
    parts = []
    for part in path.split(PATH_SEPARATOR):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    normalized = PATH_SEPARATOR + PATH_SEPARATOR.join(parts)
    if not remove_trailing_slash and parts and path.endswith(PATH_SEPARATOR):
        normalized += PATH_SEPARATOR
    return normalized


def is_root_path(path: Optional[str]) -> bool:
    return normalize(path) == ROOT_PATH


def get_name(path: Optional[str]) -> str:
    """Get the last segment of a path, empty for the root."""
    return normalize(path).rsplit(PATH_SEPARATOR, 1)[-1]


def get_parent(path: Optional[str]) -> Optional[str]:
    """Get the parent folder of a path, None for the root."""
    path = normalize(path)
    if path == ROOT_PATH:
        return None
    parent = path.rsplit(PATH_SEPARATOR, 1)[0]
    return parent or ROOT_PATH


def combine(*parts: Optional[str]) -> str:
    return normalize(PATH_SEPARATOR.join(p for p in parts if p))


def to_absolute(path: Optional[str], prefix: str = "") -> str:
    """Map a user path to the backend path living under the storage prefix.

    Args:
        path (str): The user path.
        prefix (str, optional): The backend storage prefix (bucket or root folder). Defaults to "".

    Returns:
        str: The normalized backend path.
    """
    path = path or ""
    prefix = (prefix or "").strip(PATH_SEPARATOR)
    if not prefix:
        return normalize(path)
    if path.startswith(PATH_SEPARATOR):
        return normalize(f"/{prefix}{path}")
    return normalize(f"{prefix}/{path}")


def from_absolute(full_name: str, prefix: str = "") -> str:
    """Map a backend path back to the user path.

    Paths that do not carry the storage prefix are passed through unchanged.

    Args:
        full_name (str): The backend path.
        prefix (str, optional): The backend storage prefix. Defaults to "".

    Returns:
        str: The user path.
    """
    prefix = (prefix or "").strip(PATH_SEPARATOR)
    if prefix and full_name.startswith(f"/{prefix}/"):
        return full_name[len(prefix) + 1:]
    if prefix and full_name == f"/{prefix}":
        # the storage root itself
        return ROOT_PATH
    return full_name


def format_folder_prefix(folder_path: Optional[str]) -> Optional[str]:
    """Make an object store listing prefix out of a folder path.

    Args:
        folder_path (str): The folder path.

    Returns:
        Optional[str]: None for the root, otherwise the relative prefix ending with a separator.
    """
    folder_path = normalize(folder_path)
    if is_root_path(folder_path):
        return None
    if not folder_path.endswith(PATH_SEPARATOR):
        folder_path += PATH_SEPARATOR
    return folder_path.lstrip(PATH_SEPARATOR)
