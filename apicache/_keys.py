from __future__ import annotations

import re
import typing as tp
from collections import defaultdict

__all__ = ("KeySpace", "GroupIndex")

GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class KeySpace:
    """
    Builds the namespaced keys the cache writes to its backend.

    Entries live under ``"<prefix>:<url>"`` and group membership sets under
    ``"<prefix>:group:<name>"``. The prefix keeps cache data apart from
    anything else sharing the same backend; it is never stripped back off.
    """

    def __init__(self, prefix: str = "apicache") -> None:
        self.prefix = prefix

    def entry_key(self, url: str) -> str:
        return f"{self.prefix}:{url}"

    def group_key(self, name: str) -> str:
        return f"{self.prefix}:group:{name}"

    @property
    def pattern(self) -> str:
        """Glob matching every key under the prefix, with the prefix itself matched literally."""
        return GLOB_SPECIAL.sub(r"\\\1", self.prefix) + ":*"

    def __repr__(self) -> str:
        return f"KeySpace(prefix={self.prefix!r})"


class GroupIndex:
    """In-process group membership, tracked in both directions."""

    def __init__(self) -> None:
        self._groups: tp.DefaultDict[str, tp.Set[str]] = defaultdict(set)
        self._keys: tp.DefaultDict[str, tp.Set[str]] = defaultdict(set)

    def add(self, group: str, key: str) -> None:
        self._groups[group].add(key)
        self._keys[key].add(group)

    def members(self, group: str) -> tp.FrozenSet[str]:
        if group not in self._groups:
            return frozenset()
        return frozenset(self._groups[group])

    def groups_of(self, key: str) -> tp.FrozenSet[str]:
        if key not in self._keys:
            return frozenset()
        return frozenset(self._keys[key])

    def remove_key(self, key: str) -> None:
        for group in self._keys.pop(key, ()):
            members = self._groups.get(group)
            if members is None:
                continue
            members.discard(key)
            if not members:
                del self._groups[group]

    def remove_group(self, group: str) -> None:
        for key in self._groups.pop(group, ()):
            groups = self._keys.get(key)
            if groups is None:
                continue
            groups.discard(group)
            if not groups:
                del self._keys[key]

    def clear(self) -> None:
        self._groups.clear()
        self._keys.clear()

    def __iter__(self) -> tp.Iterator[str]:
        yield from self._groups
