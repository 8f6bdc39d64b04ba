from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Principal(Base):
    """
    Anyone who can own, request or receive access to a patient record.
    Registration and credentials live outside this service; rows here only
    give references (username / wallet address) a stable id.
    """

    __tablename__ = "principals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    address: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)  # e.g. wallet address
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    healthcare_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    organization_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def principal_id(self) -> str:
        return str(self.id)

    def to_public_dict(self) -> dict:
        return {
            "id": self.principal_id,
            "username": self.username,
            "address": self.address,
            "name": self.name,
            "healthcare_type": self.healthcare_type,
            "organization_name": self.organization_name,
        }


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.medrec.modules.patient_records.models import PatientRecord, RecordEvent, RecordGrant  # noqa: E402,F401
