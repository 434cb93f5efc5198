"""
Immutable field-level patches over a user's JSON document.

A ``Patch`` is the unit of change handed to ``save_with_retry``. It records
*what* to change, never a whole-document snapshot, so it can be replayed
against a freshly reloaded document after a version conflict without
discarding fields another writer changed in the meantime.

Paths are tuples of segments. A segment applied to a dict selects a key;
a segment applied to a list of objects selects the element whose ``id``
equals the segment::

    Patch().set(("scheduledSummaries", "s1", "lastRun"), "2026-01-05T11:03:00+00:00")
    Patch().remove(("scheduledSummaries", "s2"))

Manifesto:
    - **Explicit changes:** The change is data, not a closure over stale state
    - **Replayable:** ``apply`` never mutates its input
    - **Disjoint-safe:** Two patches touching different paths compose

Tags:
    patch, optimistic-concurrency, json, digest-spine
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from .errors import PatchPathError

Path = tuple[str, ...]


class _Remove:
    def __repr__(self) -> str:
        return "REMOVE"


REMOVE: Any = _Remove()
"""Sentinel value: delete the addressed key or list element."""


@dataclass(frozen=True)
class Patch:
    """Ordered, immutable sequence of ``(path, value)`` operations."""

    ops: tuple[tuple[Path, Any], ...] = ()

    def set(self, path: Path, value: Any) -> Patch:
        """Return a new patch with ``path = value`` appended."""
        return Patch(self.ops + ((_check_path(path), value),))

    def remove(self, path: Path) -> Patch:
        """Return a new patch that deletes ``path`` (no-op if already absent)."""
        return Patch(self.ops + ((_check_path(path), REMOVE),))

    @property
    def paths(self) -> list[Path]:
        return [path for path, _ in self.ops]

    def __len__(self) -> int:
        return len(self.ops)

    def __bool__(self) -> bool:
        return bool(self.ops)

    def apply(self, doc: dict[str, Any]) -> dict[str, Any]:
        """Apply every op in order to a deep copy of ``doc``.

        Raises:
            PatchPathError: An intermediate segment does not resolve.
        """
        result = copy.deepcopy(doc)
        for path, value in self.ops:
            _apply_op(result, path, value)
        return result


def _check_path(path: Path) -> Path:
    path = tuple(str(segment) for segment in path)
    if not path:
        raise PatchPathError("Patch path must have at least one segment")
    return path


def _find_index(items: list[Any], segment: str) -> int | None:
    for index, item in enumerate(items):
        if isinstance(item, dict) and str(item.get("id")) == segment:
            return index
    return None


def _apply_op(doc: dict[str, Any], path: Path, value: Any) -> None:
    container: Any = doc
    for depth, segment in enumerate(path[:-1]):
        if isinstance(container, dict):
            if segment not in container:
                if value is REMOVE:
                    return
                container[segment] = {}
            container = container[segment]
        elif isinstance(container, list):
            index = _find_index(container, segment)
            if index is None:
                if value is REMOVE:
                    return
                raise PatchPathError(
                    f"No element with id={segment!r} at {'/'.join(path[: depth + 1])}"
                )
            container = container[index]
        else:
            raise PatchPathError(f"Cannot descend into {'/'.join(path[: depth + 1])}")

    last = path[-1]
    if isinstance(container, dict):
        if value is REMOVE:
            container.pop(last, None)
        else:
            container[last] = copy.deepcopy(value)
    elif isinstance(container, list):
        index = _find_index(container, last)
        if value is REMOVE:
            if index is not None:
                del container[index]
        elif index is None:
            container.append(copy.deepcopy(value))
        else:
            container[index] = copy.deepcopy(value)
    else:
        raise PatchPathError(f"Cannot assign into {'/'.join(path)}")


__all__ = [
    "Patch",
    "REMOVE",
]
