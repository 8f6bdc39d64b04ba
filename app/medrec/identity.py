"""
Identity provider: turns a principal reference (username, wallet address or
principal id) into the stable principal id used inside patient records.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, sessionmaker

from app.medrec.models import Principal
from app.medrec.modules.patient_records.errors import NotFound


class IdentityProvider:
    def __init__(self, sm: sessionmaker) -> None:
        self._sm = sm

    def _lookup(self, s: Session, reference: str) -> Principal | None:
        ref = reference.strip()
        if ref.isdigit():
            p = s.get(Principal, int(ref))
            if p is not None:
                return p
        return (
            s.query(Principal)
            .filter(or_(Principal.username == ref, func.lower(Principal.address) == ref.lower()))
            .first()
        )

    def resolve(self, reference: str | None) -> str:
        if not reference or not str(reference).strip():
            raise NotFound("Principal reference is required")
        s: Session = self._sm()
        try:
            p = self._lookup(s, str(reference))
            if p is None or not p.is_active:
                raise NotFound(f"Principal not found: {reference}")
            return p.principal_id
        finally:
            s.close()

    def describe(self, principal_ids: Iterable[str]) -> dict[str, dict]:
        """Public profile per id; ids that no longer resolve are left out."""
        ids = [int(i) for i in principal_ids if str(i).isdigit()]
        if not ids:
            return {}
        s: Session = self._sm()
        try:
            rows = s.query(Principal).filter(Principal.id.in_(ids)).all()
            return {p.principal_id: p.to_public_dict() for p in rows}
        finally:
            s.close()


def identity_from_app(app) -> IdentityProvider:
    provider = app.extensions.get("identity_provider")
    if provider is None:
        provider = IdentityProvider(app.extensions["sqlalchemy_sessionmaker"])
        app.extensions["identity_provider"] = provider
    return provider
