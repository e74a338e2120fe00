"""
Dot-path lookup into JSON-like documents.

``resolve_path({"metadata": {"x": {"y": 3}}}, "metadata.x.y") == 3``.
Numeric segments index into lists (``accountAddresses.0``).
"""
from typing import Any, Optional

MISSING = object()


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment, MISSING)
    if isinstance(current, (list, tuple)):
        try:
            index = int(segment)
        except ValueError:
            return MISSING
        if -len(current) <= index < len(current):
            return current[index]
        return MISSING
    return MISSING


def resolve_path(document: Any, path: Optional[str], default: Any = None) -> Any:
    """
    Walk ``document`` along the dot separated ``path``.

    Returns ``default`` for an empty path, a missing key, an out of range
    index or an intermediate value that is neither an object nor a list.
    """
    if not path or not isinstance(path, str):
        return default
    current = document
    for segment in path.split("."):
        if segment == "":
            return default
        current = _step(current, segment)
        if current is MISSING:
            return default
    return current
