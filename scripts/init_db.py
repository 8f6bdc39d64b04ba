import argparse
import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv

from app.medrec.db import build_sessionmaker, sessionmaker_scope
from app.medrec.models import Base, Principal


def parse_principals(raw: str) -> list[tuple[str, str | None]]:
    """`alice:0xabc,bob` -> [("alice", "0xabc"), ("bob", None)]"""
    out = []
    for item in (raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        username, _, address = item.partition(":")
        out.append((username.strip(), address.strip() or None))
    return out


def seed_only(*, database_url: str | None = None, principals: list[tuple[str, str | None]] | None = None, create_schema: bool = False) -> None:
    """
    Seed principals in an idempotent way. Existing principals are left as-is
    apart from filling in a missing address.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///medrec.db").strip()
    sm = build_sessionmaker(db_url)
    if create_schema:
        # Dev convenience; production schema comes from `alembic upgrade head`.
        Base.metadata.create_all(bind=sm.kw["bind"])

    wanted = principals if principals is not None else parse_principals(os.environ.get("SEED_PRINCIPALS") or "")
    created = 0
    with sessionmaker_scope(sm) as s:
        for username, address in wanted:
            p = s.query(Principal).filter(Principal.username == username).one_or_none()
            if not p:
                s.add(Principal(username=username, address=address, is_active=True))
                created += 1
            elif address and not p.address:
                p.address = address

    print(f"Initialized database (seed_only): {created} new principal(s), {len(wanted)} requested.")


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Seed principals for the patient records service.")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--principals", default=None, help="Comma list of username[:address]; defaults to SEED_PRINCIPALS")
    parser.add_argument("--create-schema", action="store_true", help="create tables directly (dev only)")
    args = parser.parse_args()
    principals = parse_principals(args.principals) if args.principals is not None else None
    seed_only(database_url=args.database_url, principals=principals, create_schema=args.create_schema)


if __name__ == "__main__":
    main()
