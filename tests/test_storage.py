import pytest

from app.medrec.storage import FileStore, LocalStorage, StorageError, file_store_from_config


def test_local_file_store_put_get_remove(tmp_path):
    files = FileStore(LocalStorage(root=tmp_path))
    ref = files.put("P 1", b"hello", "../../lab results.pdf", "application/pdf")
    assert ref.startswith("patients/P_1/")
    assert ref.endswith("/lab_results.pdf")
    assert files.get(ref) == b"hello"

    files.remove(ref)
    with pytest.raises(StorageError):
        files.get(ref)
    files.remove(ref)


def test_local_storage_rejects_keys_outside_root(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.txt", b"x")


def test_file_store_from_config_uses_storage_root(tmp_path):
    files = file_store_from_config({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path)})
    ref = files.put("P1", b"abc", "a.txt")
    assert (tmp_path / ref).read_bytes() == b"abc"
