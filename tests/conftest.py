from datetime import timedelta
from typing import Any, Dict, Optional

import mongomock
import pytest
from botocore.exceptions import ClientError
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from security import create_access_token, hash_password, refresh_token_expiry, session_claims
from storage import BlobRef, BlobStore, optional_blob_store

BUCKET = "catalog-test"
REGION = "ap-south-1"


class FakeBlobStore(BlobStore):
    """Keeps blobs in memory and records every call."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.puts = []
        self.deleted = []
        self.fail_on = set()

    def put(self, key, data, content_type):
        self.puts.append(key)
        self.objects[key] = data
        return BlobRef(BUCKET, REGION, key)

    def delete(self, ref):
        if ref.key in self.fail_on:
            raise ClientError({"Error": {"Code": "ServiceUnavailable", "Message": "storage unavailable"}}, "DeleteObject")
        self.deleted.append(ref.key)
        self.objects.pop(ref.key, None)

    def ref_for_url(self, url):
        ref = BlobRef.from_url(url)
        if ref is None or ref.bucket != BUCKET:
            return None
        return ref

    @staticmethod
    def url(key: str) -> str:
        return BlobRef(BUCKET, REGION, key).to_url()


@pytest.fixture
def db():
    database = mongomock.MongoClient()["catalog_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def store():
    return FakeBlobStore()


@pytest.fixture
def client(db, store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[optional_blob_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email: str, password: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    doc = {
        "name": "Test User",
        "email": email,
        "role": "user",
        "provider": "credentials",
        "contactNumbers": ["0771234567"],
        "addresses": [],
        "image": None,
        "isActive": True,
        "refreshTokenExpiry": refresh_token_expiry(),
    }
    if password:
        doc["password"] = hash_password(password)
    doc.update(fields)
    user_id = create_document(db, "user", doc)
    return db["user"].find_one({"_id": ObjectId(user_id)})


def auth_headers(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> Dict[str, str]:
    token = create_access_token(session_claims(user), expires_delta)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role="admin", provider="google", contactNumbers=[])


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def user_headers(db):
    return auth_headers(make_user(db, "shopper@example.com"))


def brand_payload(name: str = "Dell", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "brandName": name,
        "brandDescription": "Laptops and monitors for work and play.",
        "brandImage": FakeBlobStore.url(f"brands/{name.lower()}.png"),
    }
    payload.update(overrides)
    return payload


def category_payload(name: str = "Gaming", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "categoryName": name,
        "categoryDescription": "High refresh rate gaming laptops.",
        "categoryImage": FakeBlobStore.url(f"categories/{name.lower()}.png"),
    }
    payload.update(overrides)
    return payload


def component_payload(name: str = "SSD", **overrides: Any) -> Dict[str, Any]:
    payload = {"componentName": name, "filterLabels": ["Capacity", "Interface"]}
    payload.update(overrides)
    return payload


def accessory_payload(slug: str = "usb-c-hub-3", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "accessoryName": "USB-C Hub",
        "slug": slug,
        "description": "Seven port hub with HDMI and card reader.",
        "offerPrice": 49.5,
        "oldPrice": 59,
        "mainImage": FakeBlobStore.url("accessories/a.jpg"),
        "subImages": [],
        "isNewArrival": True,
    }
    payload.update(overrides)
    return payload


def component_item_payload(component_id: str, slug: str = "samsung-990-pro-1tb", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "itemName": "Samsung 990 Pro 1TB",
        "slug": slug,
        "component": component_id,
        "filterValues": [
            {"filterLabel": "Capacity", "filterValue": "1TB"},
            {"filterLabel": "Interface", "filterValue": "NVMe"},
        ],
        "model": "MZ-V9P1T0",
        "unitPrice": 129.99,
        "availability": "InStock",
        "description": "PCIe 4.0 NVMe SSD with 7450 MB/s reads.",
        "specifications": [{"label": "Form factor", "value": "M.2 2280"}],
        "mainImage": FakeBlobStore.url("component-items/main.jpg"),
        "subImages": [FakeBlobStore.url("component-items/side.jpg")],
    }
    payload.update(overrides)
    return payload
