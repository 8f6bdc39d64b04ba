"""
Access engine: every permitted state transition on a patient record.

Per (principal, record) the request relationship moves
NONE -> REQUESTED -> GRANTED, with cancel/reject returning REQUESTED to NONE
and revoke (or narrowing to nothing) returning GRANTED to NONE.

Operations validate first and mutate second, so a raised RecordError leaves
the record untouched. Each state change appends its provenance event in the
same call. Nothing here does I/O; RecordStore.apply() provides atomicity.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .aggregate import FileEntry, NewFile, Record, new_file_id
from .errors import Conflict, InvalidArgument, NotFound, Unauthorized
from .grants import GrantTable
from .provenance import (
    AccessGranted,
    AccessRejected,
    AccessRequestCancelled,
    AccessRequested,
    AccessRevoked,
    Created,
    FileAdded,
    FileRemoved,
    FileUpdated,
    OwnershipTransferred,
    ProvenanceLog,
    SharedWith,
    UnsharedWith,
)


def _require_principal(principal: str | None) -> str:
    if not principal:
        raise Unauthorized("Not authorized")
    return principal


def _require_owner(record: Record, actor: str | None) -> str:
    actor = _require_principal(actor)
    if record.owner_id != actor:
        raise Unauthorized("You are not the owner of this patient record")
    return actor


def _require_target(target: str | None) -> str:
    if not target:
        raise InvalidArgument("Target principal is required")
    return target


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _check_known_files(record: Record, file_ids: Iterable[str]) -> set[str]:
    ids = set(file_ids)
    unknown = ids - record.file_ids()
    if unknown:
        raise NotFound(f"Unknown file ids: {', '.join(sorted(unknown))}")
    return ids


def create_record(record_id: str, owner_id: str | None, initial_content: Sequence[NewFile] = ()) -> Record:
    """Build a fresh aggregate. Uniqueness of `record_id` is the store's check."""
    owner_id = _require_principal(owner_id)
    record_id = (record_id or "").strip()
    if not record_id:
        raise InvalidArgument("Patient id is required")
    content = []
    for nf in initial_content:
        if not (nf.name or "").strip():
            raise InvalidArgument("File name is required")
        content.append(FileEntry(id=new_file_id(), name=nf.name.strip(), data_type=nf.data_type, payload_ref=nf.payload_ref))
    record = Record(record_id=record_id, owner_id=owner_id, content=content, grants=GrantTable(), history=ProvenanceLog())
    record.history.append(Created(owner=owner_id))
    return record


def transfer_ownership(record: Record, actor: str | None, new_owner: str | None) -> None:
    """
    Hand the record to `new_owner`. Grants and pending requests made under the
    previous owner stay; only the new owner's own entries are dropped, since an
    owner is never also a grantee or requester.
    """
    actor = _require_owner(record, actor)
    new_owner = _require_target(new_owner)
    if new_owner == actor:
        raise InvalidArgument("You cannot transfer ownership to yourself")

    record.owner_id = new_owner
    record.grants.revoke_all(new_owner)
    record.drop_request(new_owner)
    record.history.append(OwnershipTransferred(previous_owner=actor, new_owner=new_owner))


def request_access(record: Record, requester: str | None) -> None:
    requester = _require_principal(requester)
    if requester == record.owner_id:
        raise InvalidArgument("You are the owner of this patient record")
    if record.grants.has(requester):
        raise Conflict("Patient record already shared with this principal")
    if record.has_pending_request(requester):
        raise Conflict("Access request already sent")

    record.access_requests.append(requester)
    record.history.append(AccessRequested(requester=requester))


def cancel_request(record: Record, requester: str | None) -> None:
    requester = _require_principal(requester)
    if not record.drop_request(requester):
        raise NotFound("No access request found for this principal")
    record.history.append(AccessRequestCancelled(requester=requester))


def reject_request(record: Record, actor: str | None, target: str | None) -> None:
    _require_owner(record, actor)
    target = _require_target(target)
    if not record.drop_request(target):
        raise NotFound("No access request found for this principal")
    record.history.append(AccessRejected(requester=target))


def grant_access(record: Record, actor: str | None, target: str | None, file_ids: Iterable[str]) -> bool:
    """
    Answer a pending request with a set of files. The request is always
    consumed; if no file id is new the answer is audited as a rejection.
    Returns whether the grant grew.
    """
    _require_owner(record, actor)
    target = _require_target(target)
    if not record.has_pending_request(target):
        raise NotFound("No access request found for this principal")
    ids = _check_known_files(record, file_ids)

    record.drop_request(target)
    grew = record.grants.grant(target, ids)
    if grew:
        record.history.append(AccessGranted(grantee=target))
    else:
        record.history.append(AccessRejected(requester=target))
    return grew


def share_files(record: Record, actor: str | None, target: str | None, file_ids: Iterable[str]) -> bool:
    """Owner-initiated sharing (set union). A pending ask from `target` is superseded."""
    actor = _require_owner(record, actor)
    target = _require_target(target)
    if target == actor:
        raise InvalidArgument("You cannot share with yourself")
    ids = set(file_ids)
    if not ids:
        raise InvalidArgument("File IDs are required")
    _check_known_files(record, ids)

    record.drop_request(target)
    grew = record.grants.grant(target, ids)
    if grew:
        record.history.append(SharedWith(grantee=target))
    return grew


def manage_access(record: Record, actor: str | None, target: str | None, file_ids: Iterable[str]) -> None:
    """Replace `target`'s grant with exactly `file_ids`; an empty set revokes."""
    actor = _require_owner(record, actor)
    target = _require_target(target)
    if target == actor:
        raise InvalidArgument("You cannot share with yourself")
    ids = _check_known_files(record, file_ids)

    old = record.grants.files_for(target)
    had_grant = record.grants.has(target)
    had_request = record.drop_request(target)
    record.grants.narrow_to(target, ids)

    added = ids - old
    removed = old - ids
    if added:
        record.history.append(SharedWith(grantee=target))
    elif had_grant and not ids:
        record.history.append(AccessRevoked(grantee=target))
    elif removed:
        record.history.append(UnsharedWith(grantee=target))
    elif had_request:
        record.history.append(AccessRejected(requester=target))


def revoke_access(record: Record, actor: str | None, target: str | None) -> None:
    _require_owner(record, actor)
    target = _require_target(target)
    if not record.grants.revoke_all(target):
        raise NotFound("Patient record is not shared with this principal")
    record.history.append(AccessRevoked(grantee=target))


unshare_files = revoke_access


def add_files(record: Record, actor: str | None, files: Sequence[NewFile]) -> list[FileEntry]:
    _require_owner(record, actor)
    if not files:
        raise InvalidArgument("Files are required")
    for nf in files:
        if not (nf.name or "").strip():
            raise InvalidArgument("File name is required")

    taken = record.file_ids()
    added = []
    for nf in files:
        file_id = new_file_id()
        while file_id in taken:
            file_id = new_file_id()
        taken.add(file_id)
        entry = FileEntry(id=file_id, name=nf.name.strip(), data_type=nf.data_type, payload_ref=nf.payload_ref)
        added.append(entry)
        record.content.append(entry)
        # Supplied order: the last file's event ends up at the head.
        record.history.append(FileAdded(file_id=entry.id, file_name=entry.name))
    return added


def edit_file(
    record: Record,
    actor: str | None,
    file_id: str | None,
    new_name: str | None,
    new_data_type: str | None = None,
) -> FileEntry:
    _require_owner(record, actor)
    if not file_id:
        raise InvalidArgument("File ID is required")
    if not (new_name or "").strip():
        raise InvalidArgument("Name is required")
    current = record.file(file_id)
    if current is None:
        raise NotFound("File not found")

    updated = current.renamed(new_name.strip(), new_data_type or current.data_type)
    record.content = [updated if f.id == file_id else f for f in record.content]
    record.history.append(FileUpdated(file_id=file_id, file_name=updated.name))
    return updated


def remove_files(record: Record, actor: str | None, file_ids: Iterable[str]) -> list[FileEntry]:
    """
    Drop files from content. Grants naming them are left alone; visibility is
    always intersected with current content.
    """
    _require_owner(record, actor)
    ids = _unique(file_ids)
    if not ids:
        raise InvalidArgument("File IDs are required")
    removed = [record.file(i) for i in ids]
    removed = [f for f in removed if f is not None]
    if not removed:
        raise NotFound("None of the given files exist on this patient record")

    gone = {f.id for f in removed}
    record.content = [f for f in record.content if f.id not in gone]
    for f in removed:
        record.history.append(FileRemoved(file_id=f.id, file_name=f.name))
    return removed
