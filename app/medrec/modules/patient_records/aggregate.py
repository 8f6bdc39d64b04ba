"""
In-memory shape of a patient record aggregate and its read-side projections.

Records are only mutated by engine operations running inside
RecordStore.apply(); everything here is plain data.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .grants import GrantTable
from .provenance import ProvenanceLog


def new_file_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class FileEntry:
    id: str
    name: str
    data_type: str
    payload_ref: str | None = None

    def renamed(self, name: str, data_type: str) -> "FileEntry":
        return replace(self, name=name, data_type=data_type)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "data_type": self.data_type, "payload_ref": self.payload_ref}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "FileEntry":
        return cls(id=d["id"], name=d["name"], data_type=d["data_type"], payload_ref=d.get("payload_ref"))


@dataclass(frozen=True)
class NewFile:
    """A file the caller wants added; the id is assigned by the engine."""

    name: str
    data_type: str
    payload_ref: str | None = None


@dataclass
class Record:
    record_id: str
    owner_id: str
    content: list[FileEntry] = field(default_factory=list)
    grants: GrantTable = field(default_factory=GrantTable)
    access_requests: list[str] = field(default_factory=list)
    history: ProvenanceLog = field(default_factory=ProvenanceLog)
    version: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def file(self, file_id: str) -> FileEntry | None:
        for f in self.content:
            if f.id == file_id:
                return f
        return None

    def file_ids(self) -> set[str]:
        return {f.id for f in self.content}

    def has_pending_request(self, principal: str) -> bool:
        return principal in self.access_requests

    def drop_request(self, principal: str) -> bool:
        if principal not in self.access_requests:
            return False
        self.access_requests = [p for p in self.access_requests if p != principal]
        return True

    def visible_content(self, principal: str | None) -> list[FileEntry]:
        """
        Owner sees everything; a grantee sees the intersection of their grant
        with current content; anyone else sees nothing. Grants that still name
        removed files are harmless here.
        """
        if principal is None:
            return []
        if principal == self.owner_id:
            return list(self.content)
        if not self.grants.has(principal):
            return []
        allowed = self.grants.files_for(principal)
        return [f for f in self.content if f.id in allowed]

    def shared_list(self) -> list[dict[str, Any]]:
        """Per grantee, the files currently visible to them (owner view)."""
        out = []
        for principal in self.grants.principals():
            if principal == self.owner_id:
                continue
            out.append({"principal_id": principal, "files": [f.to_dict() for f in self.visible_content(principal)]})
        return out

    def to_dict(self, viewer: str | None = None, *, full: bool = True) -> dict[str, Any]:
        """
        Snapshot for API responses. With `full=False` the content is reduced
        to what `viewer` may see and the grant table / requests are hidden
        from non-owners.
        """
        is_owner = viewer is not None and viewer == self.owner_id
        content = self.content if full else self.visible_content(viewer)
        out: dict[str, Any] = {
            "record_id": self.record_id,
            "owner_id": self.owner_id,
            "content": [f.to_dict() for f in content],
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if full or is_owner:
            out["grants"] = self.grants.to_dict()
            out["access_requests"] = list(self.access_requests)
            out["history"] = self.history.to_list()
        return out
