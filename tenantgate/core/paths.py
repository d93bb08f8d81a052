from __future__ import annotations

from typing import Iterable


def path_has_prefix(path: str, prefix: str) -> bool:
    # Match whole path segments so "/api/billing" does not swallow "/api/billing-plans".
    if prefix.endswith("/"):
        return path.startswith(prefix)
    return path == prefix or path.startswith(prefix + "/")


def first_matching_prefix(
    path: str,
    prefixes: Iterable[str],
    *,
    segment_aware: bool = True,
) -> str | None:
    # Plain string prefixes are used where a broader match must win (deny-lists).
    for prefix in prefixes:
        matched = path_has_prefix(path, prefix) if segment_aware else path.startswith(prefix)
        if matched:
            return prefix
    return None
