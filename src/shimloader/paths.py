"""Specifier resolution and path normalisation."""

from __future__ import annotations

from pathlib import PurePosixPath
from urllib.parse import urlsplit, urlunsplit

from .errors import PathResolutionError
from .types import BareSpecifier

DEFAULT_MODULES_DIR = "node_modules"
DEFAULT_EXTENSION = ".py"


def normalize(path: str) -> str:
    """Collapse empty and ``.`` segments and let ``..`` cancel its predecessor.

    ``..`` directly below the root is dropped; a leading ``..`` of a relative
    path is kept since there is nothing to cancel.
    """

    parts = path.split("/")
    i = 1
    while i < len(parts):
        current = parts[i]
        if current in (".", ""):
            del parts[i]
            continue
        if current != "..":
            i += 1
            continue

        previous = parts[i - 1]
        if previous == "":
            del parts[i]
        elif previous == "..":
            i += 1
        elif previous == ".":
            del parts[i - 1]
        else:
            del parts[i - 1 : i + 1]
            i = max(i - 1, 1)

    normalized = "/".join(parts)
    if not normalized and path.startswith("/"):
        return "/"
    return normalized


def is_url(value: str) -> bool:
    split = urlsplit(value)
    return bool(split.scheme and split.netloc)


def dirname(address: str) -> str:
    """Return everything before the last separator of ``address``."""

    return address[: address.rfind("/")]


def resolve(
    specifier: str,
    current_address: str | None,
    *,
    root: str,
    modules_dir: str = DEFAULT_MODULES_DIR,
    default_extension: str = DEFAULT_EXTENSION,
) -> str | BareSpecifier:
    """Resolve ``specifier`` into a canonical address or a bare package marker."""

    if not specifier or not specifier.strip():
        raise PathResolutionError("Cannot resolve an empty specifier.")
    if is_url(specifier):
        return specifier
    if "/" not in specifier:
        return BareSpecifier(specifier)

    from_root = False
    leading = specifier.split("/", 1)[0]
    if leading == "":
        joined = specifier
    elif leading in (".", ".."):
        if current_address:
            joined = f"{dirname(current_address)}/{specifier}"
        else:
            joined = f"{root}/{specifier}"
            from_root = True
    else:
        joined = f"{root}/{modules_dir}/{specifier}"

    address = _normalize_address(joined, root)
    if from_root and not _within(address, _normalize_address(root, root)):
        raise PathResolutionError(f"Specifier '{specifier}' escapes the root {root}.")
    return with_extension(address, default_extension)


def with_extension(address: str, extension: str) -> str:
    """Append ``extension`` when the last segment has none.

    This is a heuristic: extensionless data files are misresolved.
    """

    if not extension:
        return address
    last = address.rsplit("/", 1)[-1]
    if PurePosixPath(last).suffix:
        return address
    return f"{address}{extension}"


def _normalize_address(joined: str, root: str) -> str:
    split = urlsplit(joined)
    if split.scheme and split.netloc:
        return urlunsplit(split._replace(path=normalize(split.path or "/")))
    if is_url(root) and joined.startswith("/"):
        origin = urlsplit(root)
        return urlunsplit((origin.scheme, origin.netloc, normalize(joined), "", ""))
    normalized = normalize(joined)
    if normalized.startswith(".."):
        raise PathResolutionError(f"Cannot normalise '{joined}' into an address.")
    return normalized


def _within(address: str, root: str) -> bool:
    prefix = root.rstrip("/")
    return address == prefix or address.startswith(f"{prefix}/") or prefix == ""


__all__ = ["BareSpecifier", "dirname", "is_url", "normalize", "resolve", "with_extension"]
