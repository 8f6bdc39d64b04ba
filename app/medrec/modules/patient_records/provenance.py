"""
Provenance Log: the append-only, per-record history of committed changes.

Each event kind is its own frozen dataclass carrying exactly the fields that
kind needs. The log is read most-recent-first; the application order of
appends (not timestamp values) decides that order.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime(timezone=False) columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventKind(str, Enum):
    CREATED = "created"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    ACCESS_REQUESTED = "access_requested"
    ACCESS_REQUEST_CANCELLED = "access_request_cancelled"
    ACCESS_GRANTED = "access_granted"
    ACCESS_REJECTED = "access_rejected"
    ACCESS_REVOKED = "access_revoked"
    SHARED_WITH = "shared_with"
    UNSHARED_WITH = "unshared_with"
    FILE_ADDED = "file_added"
    FILE_REMOVED = "file_removed"
    FILE_UPDATED = "file_updated"


def _wire(name: str) -> Any:
    return field(metadata={"wire": name})


@dataclass(frozen=True, kw_only=True)
class ProvenanceEvent:
    kind: ClassVar[EventKind]

    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, str]:
        """Kind-specific fields keyed by their wire name."""
        return {f.metadata["wire"]: getattr(self, f.name) for f in fields(self) if "wire" in f.metadata}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind.value, "timestamp": self.timestamp.isoformat()}
        out.update(self.payload())
        return out


@dataclass(frozen=True, kw_only=True)
class Created(ProvenanceEvent):
    kind = EventKind.CREATED
    owner: str = _wire("by")


@dataclass(frozen=True, kw_only=True)
class OwnershipTransferred(ProvenanceEvent):
    kind = EventKind.OWNERSHIP_TRANSFERRED
    previous_owner: str = _wire("by")
    new_owner: str = _wire("to")


@dataclass(frozen=True, kw_only=True)
class AccessRequested(ProvenanceEvent):
    kind = EventKind.ACCESS_REQUESTED
    requester: str = _wire("by")


@dataclass(frozen=True, kw_only=True)
class AccessRequestCancelled(ProvenanceEvent):
    kind = EventKind.ACCESS_REQUEST_CANCELLED
    requester: str = _wire("by")


@dataclass(frozen=True, kw_only=True)
class AccessGranted(ProvenanceEvent):
    kind = EventKind.ACCESS_GRANTED
    grantee: str = _wire("with")


@dataclass(frozen=True, kw_only=True)
class AccessRejected(ProvenanceEvent):
    kind = EventKind.ACCESS_REJECTED
    requester: str = _wire("for")


@dataclass(frozen=True, kw_only=True)
class AccessRevoked(ProvenanceEvent):
    kind = EventKind.ACCESS_REVOKED
    grantee: str = _wire("with")


@dataclass(frozen=True, kw_only=True)
class SharedWith(ProvenanceEvent):
    kind = EventKind.SHARED_WITH
    grantee: str = _wire("with")


@dataclass(frozen=True, kw_only=True)
class UnsharedWith(ProvenanceEvent):
    kind = EventKind.UNSHARED_WITH
    grantee: str = _wire("with")


@dataclass(frozen=True, kw_only=True)
class FileAdded(ProvenanceEvent):
    kind = EventKind.FILE_ADDED
    file_id: str = _wire("file_id")
    file_name: str = _wire("file_name")


@dataclass(frozen=True, kw_only=True)
class FileRemoved(ProvenanceEvent):
    kind = EventKind.FILE_REMOVED
    file_id: str = _wire("file_id")
    file_name: str = _wire("file_name")


@dataclass(frozen=True, kw_only=True)
class FileUpdated(ProvenanceEvent):
    kind = EventKind.FILE_UPDATED
    file_id: str = _wire("file_id")
    file_name: str = _wire("file_name")


EVENT_TYPES: dict[EventKind, type[ProvenanceEvent]] = {
    cls.kind: cls
    for cls in (
        Created,
        OwnershipTransferred,
        AccessRequested,
        AccessRequestCancelled,
        AccessGranted,
        AccessRejected,
        AccessRevoked,
        SharedWith,
        UnsharedWith,
        FileAdded,
        FileRemoved,
        FileUpdated,
    )
}


def build_event(kind: EventKind | str, timestamp: datetime, payload: dict[str, Any]) -> ProvenanceEvent:
    """Rebuild an event from its kind and wire-keyed payload (e.g. a stored row)."""
    cls = EVENT_TYPES[EventKind(kind)]
    kwargs: dict[str, Any] = {"timestamp": timestamp}
    for f in fields(cls):
        wire = f.metadata.get("wire")
        if wire is None:
            continue
        value = payload.get(wire)
        if value is None:
            raise ValueError(f"{cls.__name__} event is missing {wire!r}")
        kwargs[f.name] = value
    return cls(**kwargs)


class ProvenanceLog:
    """
    Most-recent-first event sequence. Entries loaded from storage are kept
    as-is; `pending()` lists what was appended since, in application order.
    """

    def __init__(self, entries: Iterable[ProvenanceEvent] = ()) -> None:
        self._entries: list[ProvenanceEvent] = list(entries)
        self._pending: list[ProvenanceEvent] = []

    def append(self, event: ProvenanceEvent) -> None:
        self._entries.insert(0, event)
        self._pending.append(event)

    def pending(self) -> list[ProvenanceEvent]:
        return list(self._pending)

    @property
    def head(self) -> ProvenanceEvent | None:
        return self._entries[0] if self._entries else None

    def entries(self) -> tuple[ProvenanceEvent, ...]:
        return tuple(self._entries)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self._entries]

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def __iter__(self) -> Iterator[ProvenanceEvent]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
