import pytest

from rmadesk.errors import NotFoundError, StoreError
from rmadesk.store import DocumentStore, get_connection


def test_create_get_update_delete(store):
    brands = store.collection("brands")
    doc_id = brands.create({"name": "Acme", "country": "US"})

    doc = brands.get(doc_id)
    assert doc["id"] == doc_id
    assert doc["name"] == "Acme"
    assert doc["createdAt"] and doc["updatedAt"]

    updated = brands.update(doc_id, {"name": "Acme Corp"})
    assert updated["name"] == "Acme Corp"
    assert updated["country"] == "US"
    assert updated["createdAt"] == doc["createdAt"]

    assert brands.count() == 1
    assert brands.delete(doc_id) is True
    assert brands.delete(doc_id) is False
    assert brands.find(doc_id) is None


def test_insert_and_update_return_stored_document(store):
    rmas = store.collection("rmas")
    doc = rmas.insert({"status": "processing", "createdAt": "2023-01-02T00:00:00+00:00"}, doc_id="r1")
    assert doc["id"] == "r1"
    assert doc["createdAt"] == "2023-01-02T00:00:00+00:00"

    updated = rmas.update("r1", {"status": "ready"})
    assert updated == rmas.get("r1")
    assert updated["createdAt"] == "2023-01-02T00:00:00+00:00"


def test_collections_are_separate(store):
    store.collection("brands").create({"name": "Acme"}, doc_id="x")
    store.collection("contacts").create({"company": "Acme"}, doc_id="x")
    assert store.collection("brands").get("x")["name"] == "Acme"
    assert store.collection("contacts").get("x")["company"] == "Acme"


def test_missing_document_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.collection("rmas").get("nope")
    with pytest.raises(NotFoundError):
        store.collection("rmas").update("nope", {"status": "ready"})


def test_closed_store_reports_unavailable():
    store = DocumentStore(get_connection(":memory:"))
    store.close()
    with pytest.raises(StoreError, match="store unavailable"):
        store.collection("brands").list()


def test_documents_survive_reopen(tmp_path):
    path = str(tmp_path / "docs.sqlite")
    store = DocumentStore.open(path)
    store.collection("brands").create({"name": "Zeta"}, doc_id="z")
    store.close()

    reopened = DocumentStore.open(path)
    assert reopened.collection("brands").get("z")["name"] == "Zeta"
    reopened.close()
