from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.medrec.models import Base

from .aggregate import FileEntry, Record
from .grants import GrantTable
from .provenance import ProvenanceEvent, ProvenanceLog, build_event

# wire key -> column on record_events
_EVENT_COLUMNS = {
    "by": "by_principal",
    "to": "to_principal",
    "for": "for_principal",
    "with": "with_principal",
    "file_id": "file_id",
    "file_name": "file_name",
}


class PatientRecord(Base):
    """
    One document per patient record. `version` is the optimistic concurrency
    token: every UPDATE is issued as `... WHERE version = :loaded`.
    """

    __tablename__ = "patient_records"

    record_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    content: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # [FileEntry.to_dict()]
    access_requests: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # [principal_id]

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    grant_rows: Mapped[list["RecordGrant"]] = relationship(
        "RecordGrant",
        back_populates="record",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    events: Mapped[list["RecordEvent"]] = relationship(
        "RecordEvent",
        order_by="RecordEvent.seq.desc()",
        lazy="selectin",
        viewonly=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def grant_table(self) -> GrantTable:
        return GrantTable({g.principal_id: g.file_ids or [] for g in self.grant_rows})

    def last_seq(self) -> int:
        return max((e.seq for e in self.events), default=0)

    def to_aggregate(self) -> Record:
        return Record(
            record_id=self.record_id,
            owner_id=self.owner_id,
            content=[FileEntry.from_dict(d) for d in (self.content or [])],
            grants=self.grant_table(),
            access_requests=list(self.access_requests or []),
            history=ProvenanceLog(e.to_event() for e in self.events),
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RecordGrant(Base):
    __tablename__ = "record_grants"
    __table_args__ = (
        UniqueConstraint("record_id", "principal_id", name="uq_record_grant_principal"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    record_id: Mapped[str] = mapped_column(
        ForeignKey("patient_records.record_id", ondelete="CASCADE"),
        nullable=False,
    )
    principal_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    record: Mapped[PatientRecord] = relationship("PatientRecord", back_populates="grant_rows")


class RecordEvent(Base):
    """
    Append-only provenance row. `seq` is the per-record application order;
    it, not `timestamp`, decides read order.
    """

    __tablename__ = "record_events"
    __table_args__ = (
        UniqueConstraint("record_id", "seq", name="uq_record_event_seq"),
        Index("idx_record_events_record_seq", "record_id", "seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    record_id: Mapped[str] = mapped_column(
        ForeignKey("patient_records.record_id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    by_principal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_principal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    for_principal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    with_principal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @classmethod
    def from_event(cls, record_id: str, seq: int, event: ProvenanceEvent) -> "RecordEvent":
        columns = {_EVENT_COLUMNS[k]: v for k, v in event.payload().items()}
        return cls(record_id=record_id, seq=seq, kind=event.kind.value, timestamp=event.timestamp, **columns)

    def to_event(self) -> ProvenanceEvent:
        payload = {wire: getattr(self, col) for wire, col in _EVENT_COLUMNS.items()}
        return build_event(self.kind, self.timestamp, payload)
