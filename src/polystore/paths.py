"""Storage path helpers for polystore.

A path is an ordered sequence of non-empty, case-sensitive segments joined
by ``/``. The root folder is the empty sequence and renders as ``""``.
Every backend receives paths in normalized form, so ``"/a//b/"``,
``"a/b"`` and ``"a/./c/../b"`` all address the same object.
"""

PATH_SEPARATOR = "/"
ROOT_FOLDER_PATH = ""


def split(path: str | None) -> list[str]:
    """Split a path into its normalized segments.

    ``.`` segments are dropped and ``..`` removes the previous segment.
    Going above the root is clamped at the root.

    Args:
        path: The path to split. ``None`` is treated as the root.

    Returns:
        The list of non-empty segments (empty for the root).
    """
    if not path:
        return []

    segments: list[str] = []
    for part in path.split(PATH_SEPARATOR):
        if not part or part == ".":
            continue
        if part == "..":
            if segments:
                segments.pop()
            continue
        segments.append(part)
    return segments


def normalize(path: str | None) -> str:
    """Return the canonical string form of ``path``.

    The result has no leading or trailing separator and no empty segments.
    Normalization is idempotent.
    """
    return PATH_SEPARATOR.join(split(path))


def combine(*parts: str | None) -> str:
    """Join path fragments and normalize the result.

    Each fragment may itself contain separators; ``None`` and empty
    fragments are ignored.

    Example:
        >>> combine("/a/", "b", "c/d")
        'a/b/c/d'
    """
    return normalize(PATH_SEPARATOR.join(p for p in parts if p))


def is_root(path: str | None) -> bool:
    """True when ``path`` addresses the root folder."""
    return not split(path)


def get_parent(path: str | None) -> str | None:
    """Return the parent folder path, or None for the root."""
    segments = split(path)
    if not segments:
        return None
    return PATH_SEPARATOR.join(segments[:-1])


def get_name(path: str | None) -> str:
    """Return the last segment of ``path`` (empty string for the root)."""
    segments = split(path)
    return segments[-1] if segments else ""


def is_under(path: str | None, folder: str | None) -> bool:
    """True when ``path`` is strictly inside ``folder``.

    Args:
        path: The candidate descendant.
        folder: The candidate ancestor folder.
    """
    child = split(path)
    parent = split(folder)
    return len(child) > len(parent) and child[: len(parent)] == parent
