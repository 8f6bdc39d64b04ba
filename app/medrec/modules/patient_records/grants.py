"""
Grant Table: principal id -> set of file ids the principal may read.

An entry never holds an empty set; emptying a principal's set removes the
entry, which is the same thing as revocation.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator


class GrantTable:
    def __init__(self, grants: dict[str, Iterable[str]] | None = None) -> None:
        self._grants: dict[str, set[str]] = {}
        for principal, file_ids in (grants or {}).items():
            ids = set(file_ids)
            if ids:
                self._grants[principal] = ids

    def grant(self, principal: str, file_ids: Iterable[str]) -> bool:
        """Union `file_ids` into the principal's set. Returns True if the set grew."""
        incoming = set(file_ids)
        current = self._grants.get(principal, set())
        added = incoming - current
        if not added:
            return False
        self._grants[principal] = current | added
        return True

    def revoke_all(self, principal: str) -> bool:
        return self._grants.pop(principal, None) is not None

    def narrow_to(self, principal: str, file_ids: Iterable[str]) -> None:
        ids = set(file_ids)
        if not ids:
            self.revoke_all(principal)
            return
        self._grants[principal] = ids

    def has(self, principal: str) -> bool:
        return principal in self._grants

    def files_for(self, principal: str) -> frozenset[str]:
        return frozenset(self._grants.get(principal, ()))

    def principals(self) -> list[str]:
        return sorted(self._grants)

    def copy(self) -> "GrantTable":
        return GrantTable(self._grants)

    def to_dict(self) -> dict[str, list[str]]:
        # Sorted lists keep stored documents stable between writes.
        return {p: sorted(ids) for p, ids in sorted(self._grants.items())}

    def __contains__(self, principal: object) -> bool:
        return principal in self._grants

    def __iter__(self) -> Iterator[str]:
        return iter(self.principals())

    def __len__(self) -> int:
        return len(self._grants)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GrantTable):
            return NotImplemented
        return self._grants == other._grants

    def __repr__(self) -> str:
        return f"GrantTable({self.to_dict()!r})"
