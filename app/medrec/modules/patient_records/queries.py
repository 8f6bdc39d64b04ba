"""Read-side listings over stored patient records (no locking needed)."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, lazyload

from .models import PatientRecord, RecordGrant

SORT_FIELDS = {
    "createdAt": PatientRecord.created_at,
    "created_at": PatientRecord.created_at,
    "patient_id": PatientRecord.record_id,
    "record_id": PatientRecord.record_id,
}
MAX_PAGE_SIZE = 100

# listings never touch grants or history
_SUMMARY_ONLY = (lazyload(PatientRecord.grant_rows), lazyload(PatientRecord.events))


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def parse_paging(args: dict) -> dict[str, Any]:
    """Normalize limit/page/sort arguments from a query string."""
    def _int(name: str, default: int) -> int:
        try:
            return int(args.get(name, default))
        except (TypeError, ValueError):
            return default

    return {
        "limit": min(max(_int("limit", 15), 1), MAX_PAGE_SIZE),
        "page": max(_int("page", 0), 0),
        "filter_text": (args.get("filter") or "").strip() or None,
        "sort_by": args.get("sortBy") or args.get("sort_by") or "createdAt",
        "sort_order": -1 if _int("sortOrder", _int("sort_order", -1)) < 0 else 1,
    }


def summarize(row: PatientRecord) -> dict[str, Any]:
    return {
        "record_id": row.record_id,
        "owner_id": row.owner_id,
        "file_count": len(row.content or []),
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def list_records(
    s: Session,
    *,
    limit: int = 15,
    page: int = 0,
    filter_text: str | None = None,
    sort_by: str = "createdAt",
    sort_order: int = -1,
    owner_id: str | None = None,
    shared_with: str | None = None,
) -> tuple[list[PatientRecord], bool, int]:
    stmt = select(PatientRecord).options(*_SUMMARY_ONLY)
    if filter_text:
        pattern = _like(filter_text)
        stmt = stmt.where(
            or_(
                PatientRecord.record_id.ilike(pattern, escape="\\"),
                PatientRecord.owner_id.ilike(pattern, escape="\\"),
            )
        )
    if owner_id is not None:
        stmt = stmt.where(PatientRecord.owner_id == owner_id)
    if shared_with is not None:
        stmt = stmt.where(
            PatientRecord.record_id.in_(
                select(RecordGrant.record_id).where(RecordGrant.principal_id == shared_with)
            )
        )

    total = s.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    col = SORT_FIELDS.get(sort_by, PatientRecord.created_at)
    stmt = stmt.order_by(col.desc() if sort_order < 0 else col.asc(), PatientRecord.record_id.asc())
    rows = list(s.scalars(stmt.limit(limit).offset(page * limit)))

    has_more = (page + 1) * limit < total
    return rows, has_more, total


def count_records(s: Session) -> int:
    return s.scalar(select(func.count()).select_from(PatientRecord)) or 0


def recent_records(s: Session, limit: int = 3) -> list[PatientRecord]:
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    stmt = select(PatientRecord).options(*_SUMMARY_ONLY).order_by(PatientRecord.created_at.desc(), PatientRecord.record_id.asc()).limit(limit)
    return list(s.scalars(stmt))
