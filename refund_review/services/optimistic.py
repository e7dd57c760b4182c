"""Optimistic update controller.

Holds the last authoritative copy of each record plus at most one staged
patch per id. The snapshot taken before the first ``stage()`` of an id is
kept until that stage is reverted or confirmed; later stages of the same
id merge into the patch but never replace the snapshot, so one revert
undoes every layered patch.
"""

from __future__ import annotations

import copy
import itertools
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

Record = dict[str, Any]
Revert = Callable[[], bool]


@dataclass
class _Staged:
    original: Record | None
    generation: int
    patch: Record = field(default_factory=dict)


class OptimisticUpdateController:
    def __init__(self, key: str = "id"):
        self._key = key
        self._base: dict[str, Record] = {}
        self._staged: dict[str, _Staged] = {}
        self._generations = itertools.count(1)

    def sync(self, records: Iterable[Record]) -> None:
        """Take in authoritative records. Staged patches stay layered on top."""
        for record in records:
            self._base[str(record[self._key])] = copy.deepcopy(record)

    def is_staged(self, id: str) -> bool:
        return id in self._staged

    @property
    def staged_ids(self) -> frozenset[str]:
        return frozenset(self._staged)

    def staged_patch(self, id: str) -> Record | None:
        entry = self._staged.get(id)
        return dict(entry.patch) if entry else None

    def view(self, id: str) -> Record | None:
        """Current value as the reviewer should see it: base plus staged patch."""
        base = self._base.get(id)
        entry = self._staged.get(id)
        if entry is None:
            return copy.deepcopy(base) if base is not None else None
        return {**copy.deepcopy(base or {}), **copy.deepcopy(entry.patch)}

    def overlay(self, records: Iterable[Record]) -> list[Record]:
        """Apply staged patches to a list of records, e.g. a freshly loaded page."""
        result = []
        for record in records:
            entry = self._staged.get(str(record[self._key]))
            result.append({**record, **entry.patch} if entry else dict(record))
        return result

    def stage(self, id: str, patch: Record) -> Revert:
        """Apply ``patch`` locally and return the function that undoes it.

        The returned ``revert`` restores the value present before the first
        outstanding stage of ``id``. It returns ``False`` and does nothing when
        the stage it belongs to was already reverted or confirmed.
        """
        entry = self._staged.get(id)
        if entry is None:
            original = self._base.get(id)
            entry = _Staged(
                original=copy.deepcopy(original) if original is not None else None,
                generation=next(self._generations),
            )
            self._staged[id] = entry
        entry.patch.update(copy.deepcopy(patch))

        generation = entry.generation
        return lambda: self._revert(id, generation)

    def _revert(self, id: str, generation: int) -> bool:
        entry = self._staged.get(id)
        if entry is None or entry.generation != generation:
            return False
        del self._staged[id]
        if entry.original is None:
            self._base.pop(id, None)
        else:
            self._base[id] = entry.original
        return True

    def confirm(self, id: str, record: Record | None = None) -> None:
        """Drop the staged patch after a successful write.

        ``record`` is the authoritative result and replaces the base when given.
        """
        self._staged.pop(id, None)
        if record is not None:
            self._base[id] = copy.deepcopy(record)
