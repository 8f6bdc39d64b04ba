"""
Orchestration around the record store: principal resolution, payload blobs
and the external ledger all happen outside the per-record critical section.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any

from app.medrec.identity import IdentityProvider
from app.medrec.ledger import LedgerClient, LedgerError, NullLedger, submit_record_created_quietly
from app.medrec.storage import FileStore, StorageError

from . import engine
from .aggregate import FileEntry, NewFile, Record
from .errors import NotFound
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileUpload:
    name: str
    data_type: str
    data: bytes


@dataclass
class RecordService:
    store: RecordStore
    identity: IdentityProvider
    files: FileStore
    ledger: LedgerClient | NullLedger

    # -- payload helpers -------------------------------------------------

    def _put_payloads(self, record_id: str, uploads: list[FileUpload]) -> list[NewFile]:
        staged: list[NewFile] = []
        try:
            for up in uploads:
                ref = self.files.put(record_id, up.data, up.name, up.data_type)
                staged.append(NewFile(name=up.name, data_type=up.data_type, payload_ref=ref))
        except Exception:
            self._discard_payloads(staged)
            raise
        return staged

    def _discard_payloads(self, entries: list[NewFile] | list[FileEntry]) -> None:
        for e in entries:
            if not e.payload_ref:
                continue
            try:
                self.files.remove(e.payload_ref)
            except (StorageError, OSError) as err:
                logger.warning("payload cleanup failed ref=%s err=%s", e.payload_ref, err)

    # -- lifecycle -------------------------------------------------------

    def create_record(self, actor: str | None, record_id: str, uploads: list[FileUpload] | None = None) -> Record:
        uploads = uploads or []
        engine.create_record(record_id, actor)  # validate before touching storage
        staged = self._put_payloads(record_id.strip(), uploads)
        try:
            record = self.store.create(record_id, actor, staged)
        except Exception:
            self._discard_payloads(staged)
            raise
        submit_record_created_quietly(self.ledger, record.record_id, record.owner_id)
        return record

    def transfer_ownership(self, record_id: str, actor: str | None, new_owner_ref: str | None) -> Record:
        new_owner = self.identity.resolve(new_owner_ref)
        return self.store.apply(record_id, partial(engine.transfer_ownership, actor=actor, new_owner=new_owner))

    # -- access requests -------------------------------------------------

    def request_access(self, record_id: str, actor: str | None) -> Record:
        return self.store.apply(record_id, partial(engine.request_access, requester=actor))

    def cancel_request(self, record_id: str, actor: str | None) -> Record:
        return self.store.apply(record_id, partial(engine.cancel_request, requester=actor))

    def reject_request(self, record_id: str, actor: str | None, target_ref: str | None) -> Record:
        target = self.identity.resolve(target_ref)
        return self.store.apply(record_id, partial(engine.reject_request, actor=actor, target=target))

    def grant_access(self, record_id: str, actor: str | None, target_ref: str | None, file_ids: list[str]) -> Record:
        target = self.identity.resolve(target_ref)
        return self.store.apply(record_id, partial(engine.grant_access, actor=actor, target=target, file_ids=file_ids))

    # -- sharing ---------------------------------------------------------

    def share_files(self, record_id: str, actor: str | None, target_ref: str | None, file_ids: list[str]) -> Record:
        target = self.identity.resolve(target_ref)
        return self.store.apply(record_id, partial(engine.share_files, actor=actor, target=target, file_ids=file_ids))

    def manage_access(self, record_id: str, actor: str | None, target_ref: str | None, file_ids: list[str]) -> Record:
        target = self.identity.resolve(target_ref)
        return self.store.apply(record_id, partial(engine.manage_access, actor=actor, target=target, file_ids=file_ids))

    def revoke_access(self, record_id: str, actor: str | None, target_ref: str | None) -> Record:
        target = self.identity.resolve(target_ref)
        return self.store.apply(record_id, partial(engine.revoke_access, actor=actor, target=target))

    # -- content ---------------------------------------------------------

    def add_files(self, record_id: str, actor: str | None, uploads: list[FileUpload]) -> Record:
        staged = self._put_payloads(record_id, uploads)
        try:
            return self.store.apply(record_id, partial(engine.add_files, actor=actor, files=staged))
        except Exception:
            self._discard_payloads(staged)
            raise

    def edit_file(
        self,
        record_id: str,
        actor: str | None,
        file_id: str | None,
        name: str | None,
        data_type: str | None = None,
    ) -> Record:
        return self.store.apply(
            record_id,
            partial(engine.edit_file, actor=actor, file_id=file_id, new_name=name, new_data_type=data_type),
        )

    def remove_files(self, record_id: str, actor: str | None, file_ids: list[str]) -> Record:
        removed: list[FileEntry] = []

        def _remove(record: Record) -> None:
            removed[:] = engine.remove_files(record, actor, file_ids)

        _remove.__name__ = "remove_files"
        record = self.store.apply(record_id, _remove)
        self._discard_payloads(removed)
        return record

    # -- reads -----------------------------------------------------------

    def read_file(self, record_id: str, viewer: str | None, file_id: str) -> tuple[FileEntry, bytes]:
        record = self.store.get(record_id)
        entry = next((f for f in record.visible_content(viewer) if f.id == file_id), None)
        if entry is None or not entry.payload_ref:
            raise NotFound("File not found")
        try:
            return entry, self.files.get(entry.payload_ref)
        except (StorageError, OSError) as e:
            logger.error("payload read failed record_id=%s file_id=%s err=%s", record_id, file_id, e)
            raise NotFound("File payload not found") from e

    def view(self, record_id: str, viewer: str | None) -> dict[str, Any]:
        """
        Detail projection. Anonymous callers get the record with no content;
        grantees get their visible files; the owner also gets who can see what
        and who is waiting for access.
        """
        record = self.store.get(record_id)
        out: dict[str, Any] = {"patient": record.to_dict(viewer, full=False)}
        people = self.identity.describe(
            [record.owner_id, *record.grants.principals(), *record.access_requests]
        )
        out["owner"] = people.get(record.owner_id)
        if viewer is not None and viewer == record.owner_id:
            out["shared_list"] = [
                {"principal": people.get(item["principal_id"]), **item} for item in record.shared_list()
            ]
            out["access_requests"] = [
                people.get(p) or {"id": p} for p in record.access_requests if p != record.owner_id
            ]
        return out

    def history(self, record_id: str) -> list[dict[str, Any]]:
        return self.store.get(record_id).history.to_list()

    def ledger_history(self, record_id: str) -> list[dict[str, Any]]:
        self.store.get(record_id)
        try:
            return self.ledger.history(record_id)
        except LedgerError as e:
            logger.warning("ledger history failed record_id=%s err=%s", record_id, e)
            return []
