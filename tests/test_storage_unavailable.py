import pytest

import storage
from conftest import FakeBlobStore, brand_payload
from main import app
from storage import optional_blob_store


@pytest.fixture
def no_storage(client, monkeypatch):
    monkeypatch.setattr(storage, "AWS_S3_BUCKET_NAME", "")
    storage.get_blob_store.cache_clear()
    app.dependency_overrides.pop(optional_blob_store, None)
    yield
    storage.get_blob_store.cache_clear()


def test_update_and_delete_go_through_without_storage(client, admin_headers, db, no_storage):
    created = client.post("/api/admin/brands", json=brand_payload("Dell"), headers=admin_headers).json()["brand"]

    updated = client.put(
        f"/api/admin/brands/{created['id']}",
        json=brand_payload("Dell", brandImage=FakeBlobStore.url("brands/dell-2.png")),
        headers=admin_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["brand"]["brandImage"].endswith("brands/dell-2.png")

    deleted = client.delete(f"/api/admin/brands/{created['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    assert db["brand"].count_documents({}) == 0


def test_upload_is_validated_before_storage_is_needed(client, admin_headers, no_storage):
    gif = client.post(
        "/api/admin/upload-image",
        files={"image": ("a.gif", b"GIF89a", "image/gif")},
        headers=admin_headers,
    )
    assert gif.status_code == 400

    png = client.post(
        "/api/admin/upload-image",
        files={"image": ("a.png", b"\x89PNG", "image/png")},
        headers=admin_headers,
    )
    assert png.status_code == 500
    assert png.json()["detail"] == "Image storage not configured"
