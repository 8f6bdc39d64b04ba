from scripts.init_db import parse_principals, seed_only

from app.medrec.db import build_sessionmaker, sessionmaker_scope
from app.medrec.models import Principal


def test_parse_principals():
    assert parse_principals("alice:0xabc, bob,,") == [("alice", "0xabc"), ("bob", None)]
    assert parse_principals("") == []


def test_seed_only_is_idempotent(tmp_path):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    seed_only(database_url=url, principals=[("alice", None), ("bob", "0xB0B")], create_schema=True)
    seed_only(database_url=url, principals=[("alice", "0xA11CE")], create_schema=True)

    with sessionmaker_scope(build_sessionmaker(url)) as s:
        rows = {p.username: p.address for p in s.query(Principal).all()}
    assert rows == {"alice": "0xA11CE", "bob": "0xB0B"}
