"""
JSON endpoints for patient records. Thin by intent: parse the request,
resolve the acting principal, call RecordService, render the result.
RecordErrors are rendered by the app-level error handler.
"""

from __future__ import annotations

import base64
import binascii
import io

from flask import Blueprint, current_app, jsonify, request, send_file

from app.medrec.auth import current_principal_id, require_principal
from app.medrec.db import db_session

from .errors import InvalidArgument
from .queries import count_records, list_records, parse_paging, recent_records, summarize
from .service import FileUpload, RecordService

bp = Blueprint("patients", __name__)


def _service() -> RecordService:
    return current_app.extensions["record_service"]


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _principal_ref(body: dict) -> str | None:
    for key in ("username", "address", "id", "principal_id"):
        value = body.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _id_list(body: dict, *keys: str, required: bool = True) -> list[str]:
    raw = None
    for key in keys:
        if key in body:
            raw = body[key]
            break
    if raw is None:
        if required:
            raise InvalidArgument("File IDs are required")
        return []
    if not isinstance(raw, list) or not all(isinstance(i, (str, int)) for i in raw):
        raise InvalidArgument("File IDs must be a list")
    return [str(i) for i in raw]


def _decode_payload(raw: str) -> bytes:
    if "," in raw and raw.lstrip().startswith("data:"):
        raw = raw.split(",", 1)[1]
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidArgument("File content must be base64 encoded")


def _uploads(items) -> list[FileUpload]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise InvalidArgument("Files must be a list")
    out = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidArgument("Each file must be an object")
        name = (item.get("name") or "").strip()
        if not name:
            raise InvalidArgument("File name is required")
        data_type = (item.get("dataType") or item.get("data_type") or "application/octet-stream").strip()
        out.append(FileUpload(name=name, data_type=data_type, data=_decode_payload(item.get("base64") or "")))
    return out


def _patient_response(record, message: str, status: int = 200):
    viewer = current_principal_id()
    return jsonify({"patient": record.to_dict(viewer, full=False), "message": message}), status


def _listing(**kwargs):
    rows, has_more, total = list_records(db_session(), **parse_paging(request.args), **kwargs)
    return jsonify({"patients": [summarize(r) for r in rows], "has_more": has_more, "total_count": total})


# -- listings ------------------------------------------------------------


@bp.get("/")
def list_patients():
    return _listing()


@bp.get("/count")
def patients_count():
    return jsonify({"count": count_records(db_session())})


@bp.get("/recent/<int:limit>")
def recent_patients(limit: int):
    return jsonify({"patients": [summarize(r) for r in recent_records(db_session(), limit)]})


@bp.get("/mine")
@require_principal
def my_patients():
    return _listing(owner_id=current_principal_id())


@bp.get("/shared-with-me")
@require_principal
def shared_with_me():
    return _listing(shared_with=current_principal_id())


# -- lifecycle -----------------------------------------------------------


@bp.post("/")
@require_principal
def create_patient():
    body = _body()
    record_id = str(body.get("patient_id") or body.get("record_id") or "").strip()
    if not record_id:
        raise InvalidArgument("Patient id is required")
    uploads = _uploads(body.get("content", body.get("files")))
    record = _service().create_record(current_principal_id(), record_id, uploads)
    return _patient_response(record, "Patient created", 201)


@bp.get("/<record_id>")
def get_patient(record_id: str):
    return jsonify(_service().view(record_id, current_principal_id()))


@bp.get("/<record_id>/history")
def patient_history(record_id: str):
    return jsonify({"history": _service().history(record_id)})


@bp.get("/<record_id>/ledger")
def patient_ledger(record_id: str):
    return jsonify({"history": _service().ledger_history(record_id)})


@bp.post("/<record_id>/transfer-ownership")
@require_principal
def transfer_ownership(record_id: str):
    body = _body()
    new_owner = _principal_ref(body)
    if not new_owner:
        raise InvalidArgument("Username of recipient is required")
    record = _service().transfer_ownership(record_id, current_principal_id(), new_owner)
    return _patient_response(record, "Ownership transferred")


# -- access requests -----------------------------------------------------


@bp.post("/<record_id>/request-access")
@require_principal
def request_access(record_id: str):
    record = _service().request_access(record_id, current_principal_id())
    return _patient_response(record, "Access requested")


@bp.post("/<record_id>/cancel-request")
@require_principal
def cancel_request(record_id: str):
    record = _service().cancel_request(record_id, current_principal_id())
    return _patient_response(record, "Access request cancelled")


@bp.post("/<record_id>/reject-request")
@require_principal
def reject_request(record_id: str):
    target = _principal_ref(_body())
    if not target:
        raise InvalidArgument("Requester id is required")
    record = _service().reject_request(record_id, current_principal_id(), target)
    return _patient_response(record, "Access request rejected")


@bp.post("/<record_id>/grant-access")
@require_principal
def grant_access(record_id: str):
    body = _body()
    target = _principal_ref(body)
    if not target:
        raise InvalidArgument("Requester id is required")
    file_ids = _id_list(body, "fileIds", "file_ids", required=False)
    record = _service().grant_access(record_id, current_principal_id(), target, file_ids)
    return _patient_response(record, "Access granted")


# -- sharing -------------------------------------------------------------


@bp.post("/<record_id>/share-files")
@require_principal
def share_files(record_id: str):
    body = _body()
    target = _principal_ref(body)
    if not target:
        raise InvalidArgument("Username is required")
    file_ids = _id_list(body, "fileIds", "file_ids")
    record = _service().share_files(record_id, current_principal_id(), target, file_ids)
    return _patient_response(record, "Patient shared")


@bp.post("/<record_id>/manage-access")
@require_principal
def manage_access(record_id: str):
    body = _body()
    target = _principal_ref(body)
    if not target:
        raise InvalidArgument("Username is required")
    file_ids = _id_list(body, "fileIds", "file_ids", required=False)
    record = _service().manage_access(record_id, current_principal_id(), target, file_ids)
    return _patient_response(record, "Access updated")


@bp.post("/<record_id>/revoke-access")
@require_principal
def revoke_access(record_id: str):
    target = _principal_ref(_body())
    if not target:
        raise InvalidArgument("Username is required")
    record = _service().revoke_access(record_id, current_principal_id(), target)
    return _patient_response(record, "Access revoked")


# -- files ---------------------------------------------------------------


@bp.post("/<record_id>/files")
@require_principal
def add_files(record_id: str):
    uploads = _uploads(_body().get("files"))
    if not uploads:
        raise InvalidArgument("Files are required")
    record = _service().add_files(record_id, current_principal_id(), uploads)
    return _patient_response(record, "File added")


@bp.patch("/<record_id>/files/<file_id>")
@require_principal
def edit_file(record_id: str, file_id: str):
    body = _body()
    record = _service().edit_file(
        record_id,
        current_principal_id(),
        file_id,
        (body.get("name") or "").strip() or None,
        (body.get("dataType") or body.get("data_type") or "").strip() or None,
    )
    return _patient_response(record, "File edited")


@bp.delete("/<record_id>/files")
@require_principal
def remove_files(record_id: str):
    file_ids = _id_list(_body(), "fileIds", "file_ids")
    record = _service().remove_files(record_id, current_principal_id(), file_ids)
    return _patient_response(record, "Files removed")


@bp.get("/<record_id>/files/<file_id>/download")
@require_principal
def download_file(record_id: str, file_id: str):
    entry, data = _service().read_file(record_id, current_principal_id(), file_id)
    return send_file(
        io.BytesIO(data),
        mimetype=entry.data_type or "application/octet-stream",
        as_attachment=True,
        download_name=entry.name,
    )
