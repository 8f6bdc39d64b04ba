"""
Access engine transitions, exercised directly against in-memory records.
"""

import pytest

from app.medrec.modules.patient_records import engine
from app.medrec.modules.patient_records.aggregate import NewFile
from app.medrec.modules.patient_records.errors import Conflict, InvalidArgument, NotFound, Unauthorized
from app.medrec.modules.patient_records.provenance import EventKind


def _record_with_files(*names: str, owner: str = "alice", record_id: str = "P1"):
    r = engine.create_record(record_id, owner)
    if names:
        engine.add_files(r, owner, [NewFile(name=n, data_type="application/pdf") for n in names])
    return r


def _ids(r):
    return [f.id for f in r.content]


def _assert_owner_invariant(r):
    assert r.owner_id
    assert not r.grants.has(r.owner_id)
    assert r.owner_id not in r.access_requests
    assert len(r.access_requests) == len(set(r.access_requests))


def test_create_record_has_single_created_event():
    r = engine.create_record("P1", "alice")
    assert r.owner_id == "alice"
    assert r.history.kinds() == [EventKind.CREATED]
    assert len(r.grants) == 0
    assert r.access_requests == []


def test_create_record_requires_owner_and_id():
    with pytest.raises(Unauthorized):
        engine.create_record("P1", None)
    with pytest.raises(InvalidArgument):
        engine.create_record("  ", "alice")


def test_request_then_duplicate_request_conflicts_and_cancel_twice_not_found():
    r = _record_with_files("a.pdf")
    engine.request_access(r, "bob")
    assert r.access_requests == ["bob"]
    with pytest.raises(Conflict):
        engine.request_access(r, "bob")
    engine.cancel_request(r, "bob")
    assert r.access_requests == []
    with pytest.raises(NotFound):
        engine.cancel_request(r, "bob")
    assert r.history.head.kind is EventKind.ACCESS_REQUEST_CANCELLED


def test_owner_cannot_request_access():
    r = _record_with_files()
    with pytest.raises(InvalidArgument):
        engine.request_access(r, "alice")


def test_grantee_cannot_request_again():
    r = _record_with_files("a.pdf")
    engine.share_files(r, "alice", "bob", _ids(r))
    with pytest.raises(Conflict):
        engine.request_access(r, "bob")


def test_missing_principal_is_unauthorized():
    r = _record_with_files("a.pdf")
    with pytest.raises(Unauthorized):
        engine.request_access(r, None)
    with pytest.raises(Unauthorized):
        engine.share_files(r, "", "bob", _ids(r))


def test_non_owner_operations_are_unauthorized_and_leave_record_unchanged():
    r = _record_with_files("a.pdf")
    before = (r.owner_id, list(r.content), r.grants.to_dict(), list(r.access_requests), len(r.history))
    with pytest.raises(Unauthorized):
        engine.share_files(r, "mallory", "bob", _ids(r))
    with pytest.raises(Unauthorized):
        engine.transfer_ownership(r, "mallory", "mallory")
    with pytest.raises(Unauthorized):
        engine.add_files(r, "mallory", [NewFile(name="x", data_type="t")])
    with pytest.raises(Unauthorized):
        engine.remove_files(r, "mallory", _ids(r))
    after = (r.owner_id, list(r.content), r.grants.to_dict(), list(r.access_requests), len(r.history))
    assert before == after


def test_reject_request_by_owner():
    r = _record_with_files("a.pdf")
    engine.request_access(r, "bob")
    engine.reject_request(r, "alice", "bob")
    assert r.access_requests == []
    assert r.history.head.to_dict()["for"] == "bob"
    with pytest.raises(NotFound):
        engine.reject_request(r, "alice", "bob")


def test_grant_access_requires_pending_request():
    r = _record_with_files("a.pdf")
    with pytest.raises(NotFound):
        engine.grant_access(r, "alice", "bob", _ids(r))


def test_grant_access_consumes_request_and_grants_files():
    r = _record_with_files("a.pdf", "b.pdf")
    f1 = _ids(r)[0]
    engine.request_access(r, "bob")
    assert engine.grant_access(r, "alice", "bob", {f1}) is True
    assert r.access_requests == []
    assert r.grants.to_dict() == {"bob": [f1]}
    head = r.history.head
    assert head.kind is EventKind.ACCESS_GRANTED
    assert head.to_dict()["with"] == "bob"


def test_grant_of_nothing_clears_request_without_granted_event():
    r = _record_with_files("a.pdf")
    engine.request_access(r, "bob")
    assert engine.grant_access(r, "alice", "bob", set()) is False
    assert r.access_requests == []
    assert not r.grants.has("bob")
    assert EventKind.ACCESS_GRANTED not in r.history.kinds()
    assert r.history.head.kind is EventKind.ACCESS_REJECTED


def test_grant_of_unknown_file_is_not_found():
    r = _record_with_files("a.pdf")
    engine.request_access(r, "bob")
    with pytest.raises(NotFound):
        engine.grant_access(r, "alice", "bob", {"nope"})
    assert r.access_requests == ["bob"]


def test_share_files_twice_records_one_event():
    r = _record_with_files("a.pdf")
    f1 = _ids(r)[0]
    engine.share_files(r, "alice", "bob", {f1})
    engine.share_files(r, "alice", "bob", {f1})
    assert r.history.kinds().count(EventKind.SHARED_WITH) == 1
    assert r.grants.files_for("bob") == {f1}


def test_share_files_supersedes_pending_request():
    r = _record_with_files("a.pdf")
    engine.request_access(r, "bob")
    engine.share_files(r, "alice", "bob", _ids(r))
    assert r.access_requests == []
    assert r.grants.has("bob")


def test_share_files_rejects_self_and_empty_set():
    r = _record_with_files("a.pdf")
    with pytest.raises(InvalidArgument):
        engine.share_files(r, "alice", "alice", _ids(r))
    with pytest.raises(InvalidArgument):
        engine.share_files(r, "alice", "bob", [])


def test_manage_access_empty_set_revokes():
    r = _record_with_files("f1.pdf", "f2.pdf", record_id="P2")
    f1, _ = _ids(r)
    engine.share_files(r, "alice", "dave", {f1})
    engine.manage_access(r, "alice", "dave", set())
    assert not r.grants.has("dave")
    assert r.history.head.kind is EventKind.ACCESS_REVOKED


def test_manage_access_replaces_rather_than_unions():
    r = _record_with_files("f1.pdf", "f2.pdf")
    f1, f2 = _ids(r)
    engine.share_files(r, "alice", "dave", {f1, f2})
    engine.manage_access(r, "alice", "dave", {f2})
    assert r.grants.files_for("dave") == {f2}
    assert r.history.head.kind is EventKind.UNSHARED_WITH

    engine.manage_access(r, "alice", "dave", {f1, f2})
    assert r.grants.files_for("dave") == {f1, f2}
    assert r.history.head.kind is EventKind.SHARED_WITH


def test_manage_access_same_set_is_silent():
    r = _record_with_files("f1.pdf")
    engine.share_files(r, "alice", "dave", _ids(r))
    n = len(r.history)
    engine.manage_access(r, "alice", "dave", _ids(r))
    assert len(r.history) == n


def test_manage_access_empty_set_on_pending_request_rejects_it():
    r = _record_with_files("f1.pdf")
    engine.request_access(r, "dave")
    engine.manage_access(r, "alice", "dave", [])
    assert r.access_requests == []
    assert r.history.head.kind is EventKind.ACCESS_REJECTED


def test_revoke_access():
    r = _record_with_files("f1.pdf")
    engine.share_files(r, "alice", "bob", _ids(r))
    engine.revoke_access(r, "alice", "bob")
    assert not r.grants.has("bob")
    assert r.history.head.kind is EventKind.ACCESS_REVOKED
    with pytest.raises(NotFound):
        engine.unshare_files(r, "alice", "bob")


def test_transfer_ownership_keeps_grants_and_requests():
    r = _record_with_files("f1.pdf")
    engine.share_files(r, "alice", "bob", _ids(r))
    engine.request_access(r, "erin")
    engine.transfer_ownership(r, "alice", "carol")
    assert r.owner_id == "carol"
    assert r.grants.to_dict() == {"bob": _ids(r)}
    assert r.access_requests == ["erin"]
    head = r.history.head.to_dict()
    assert head["type"] == "ownership_transferred" and head["to"] == "carol"
    _assert_owner_invariant(r)


def test_transfer_to_grantee_drops_their_own_grant():
    r = _record_with_files("f1.pdf")
    engine.share_files(r, "alice", "bob", _ids(r))
    engine.transfer_ownership(r, "alice", "bob")
    assert r.owner_id == "bob"
    assert not r.grants.has("bob")
    _assert_owner_invariant(r)


def test_transfer_to_self_is_invalid_and_old_owner_loses_control():
    r = _record_with_files()
    with pytest.raises(InvalidArgument):
        engine.transfer_ownership(r, "alice", "alice")
    engine.transfer_ownership(r, "alice", "carol")
    with pytest.raises(Unauthorized):
        engine.transfer_ownership(r, "alice", "dave")


def test_add_files_event_order_follows_supplied_order():
    r = engine.create_record("P1", "alice")
    added = engine.add_files(
        r,
        "alice",
        [NewFile(name="first.pdf", data_type="application/pdf"), NewFile(name="second.pdf", data_type="application/pdf")],
    )
    assert [f.name for f in r.content] == ["first.pdf", "second.pdf"]
    assert len({f.id for f in added}) == 2
    names = [e.to_dict().get("file_name") for e in r.history]
    assert names[:2] == ["second.pdf", "first.pdf"]


def test_add_files_requires_files_with_names():
    r = engine.create_record("P1", "alice")
    with pytest.raises(InvalidArgument):
        engine.add_files(r, "alice", [])
    with pytest.raises(InvalidArgument):
        engine.add_files(r, "alice", [NewFile(name=" ", data_type="t")])


def test_edit_file():
    r = _record_with_files("old.pdf")
    fid = _ids(r)[0]
    engine.edit_file(r, "alice", fid, "new.pdf", "text/plain")
    assert r.file(fid).name == "new.pdf"
    assert r.file(fid).data_type == "text/plain"
    assert r.history.head.to_dict()["file_name"] == "new.pdf"
    with pytest.raises(NotFound):
        engine.edit_file(r, "alice", "missing", "x", None)
    with pytest.raises(InvalidArgument):
        engine.edit_file(r, "alice", fid, "", None)


def test_remove_files_keeps_grant_but_hides_file():
    r = _record_with_files("f1.pdf", "f2.pdf")
    f1, f2 = _ids(r)
    engine.share_files(r, "alice", "bob", {f1, f2})
    engine.remove_files(r, "alice", [f1])
    assert f1 in r.grants.files_for("bob")
    assert [f.id for f in r.visible_content("bob")] == [f2]
    assert r.history.head.kind is EventKind.FILE_REMOVED


def test_remove_files_one_event_per_removed_id():
    r = _record_with_files("a", "b", "c")
    a, b, _ = _ids(r)
    n = len(r.history)
    engine.remove_files(r, "alice", [a, b, "unknown", a])
    assert len(r.history) == n + 2
    with pytest.raises(NotFound):
        engine.remove_files(r, "alice", ["unknown"])


def test_visible_content_projection():
    r = _record_with_files("f1", "f2")
    f1, _ = _ids(r)
    engine.share_files(r, "alice", "bob", {f1})
    assert len(r.visible_content("alice")) == 2
    assert [f.id for f in r.visible_content("bob")] == [f1]
    assert r.visible_content("stranger") == []
    assert r.visible_content(None) == []
