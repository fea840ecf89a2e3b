"""Tests for reference document storage."""

from game_forge import storage


def test_save_and_list():
    storage.save_document("Tilt Guide", "# Tilt")
    storage.save_document("Another One", "# Other")
    docs = storage.list_documents()
    assert [d["name"] for d in docs] == ["another-one", "tilt-guide"]
    assert docs[1]["text"] == "# Tilt"


def test_save_replaces_same_name():
    storage.save_document("Tilt Guide", "v1")
    storage.save_document("tilt guide", "v2")
    assert storage.list_documents() == [{"name": "tilt-guide", "text": "v2"}]


def test_delete():
    storage.save_document("Tilt Guide", "# Tilt")
    assert storage.delete_document("Tilt Guide")
    assert not storage.delete_document("Tilt Guide")
    assert storage.list_documents() == []
