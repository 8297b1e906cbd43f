"""Finalizer helpers. Both functions report whether the object changed."""

from typing import Any, Dict, Iterable

from fedsync.federation.unstructured import get_finalizers, metadata


def add_finalizers(obj: Dict[str, Any], finalizers: Iterable[str]) -> bool:
    current = get_finalizers(obj)
    missing = [f for f in finalizers if f not in current]
    if not missing:
        return False
    metadata(obj)["finalizers"] = current + missing
    return True


def remove_finalizers(obj: Dict[str, Any], finalizers: Iterable[str]) -> bool:
    to_remove = set(finalizers)
    current = get_finalizers(obj)
    remaining = [f for f in current if f not in to_remove]
    if len(remaining) == len(current):
        return False
    metadata(obj)["finalizers"] = remaining
    return True


def has_finalizer(obj: Dict[str, Any], finalizer: str) -> bool:
    return finalizer in get_finalizers(obj)
