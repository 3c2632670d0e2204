"""
Image storage.

Images live in S3 and documents only keep their public URLs. BlobRef is the
value type that converts between the two. Deleting a superseded image is
best-effort: failures are logged and never reach the caller.
"""

import logging
import random
import re
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote, unquote, urlsplit

import boto3
from fastapi import HTTPException

from config import AWS_REGION, AWS_S3_BUCKET_NAME

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MiB
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
FOLDER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")
_S3_HOST = re.compile(r"^(?P<bucket>[a-z0-9][a-z0-9.-]*)\.s3\.(?P<region>[a-z0-9-]+)\.amazonaws\.com$")


@dataclass(frozen=True)
class BlobRef:
    bucket: str
    region: str
    key: str

    def to_url(self) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(self.key)}"

    @classmethod
    def from_url(cls, url: Optional[str]) -> Optional["BlobRef"]:
        if not url or not isinstance(url, str):
            return None
        try:
            parts = urlsplit(url.strip())
        except ValueError:
            return None
        match = _S3_HOST.match(parts.hostname or "")
        key = unquote(parts.path.lstrip("/"))
        if parts.scheme not in ("http", "https") or not match or not key:
            return None
        return cls(bucket=match.group("bucket"), region=match.group("region"), key=key)


class BlobStore(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> BlobRef:
        ...

    @abstractmethod
    def delete(self, ref: BlobRef) -> None:
        ...

    @abstractmethod
    def ref_for_url(self, url: Optional[str]) -> Optional[BlobRef]:
        """Return the ref when the URL points into this store, else None."""


class S3BlobStore(BlobStore):
    def __init__(self, bucket: str, region: str, client: Any = None):
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client("s3", region_name=region)

    def put(self, key: str, data: bytes, content_type: str) -> BlobRef:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        return BlobRef(bucket=self.bucket, region=self.region, key=key)

    def delete(self, ref: BlobRef) -> None:
        self.client.delete_object(Bucket=ref.bucket, Key=ref.key)

    def ref_for_url(self, url: Optional[str]) -> Optional[BlobRef]:
        ref = BlobRef.from_url(url)
        if ref is None or ref.bucket != self.bucket:
            return None
        return ref


@lru_cache
def get_blob_store() -> BlobStore:
    if not AWS_S3_BUCKET_NAME or not AWS_REGION:
        raise HTTPException(status_code=500, detail="Image storage not configured")
    return S3BlobStore(AWS_S3_BUCKET_NAME, AWS_REGION)


def optional_blob_store() -> Optional[BlobStore]:
    """Route dependency: None when storage is not configured, so document writes still go through."""
    try:
        return get_blob_store()
    except HTTPException as e:
        logger.warning("Image storage unavailable: %s", e.detail)
        return None


def require_blob_store(store: Optional[BlobStore]) -> BlobStore:
    if store is None:
        raise HTTPException(status_code=500, detail="Image storage not configured")
    return store


# Upload validation

def validate_image(content_type: Optional[str], size: int) -> None:
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Invalid file type. Please upload a JPG, PNG, or WebP image.")
    if size > MAX_IMAGE_SIZE:
        raise HTTPException(status_code=400, detail="Image is too large. Maximum size is 5MB.")


def validate_folder(folder: Optional[str]) -> str:
    if not folder or not FOLDER_PATTERN.match(folder):
        raise HTTPException(status_code=400, detail="Invalid folder name.")
    return folder


def file_extension(filename: Optional[str], content_type: str) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext.isalnum() and len(ext) <= 5:
            return ext
    return ALLOWED_IMAGE_TYPES.get(content_type, "jpg")


def build_key(folder: str, filename: Optional[str], content_type: str) -> str:
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{folder}/{timestamp}-{suffix}.{file_extension(filename, content_type)}"


def read_upload(fileobj: Any) -> bytes:
    # one byte past the ceiling is enough to know it is too large
    return fileobj.read(MAX_IMAGE_SIZE + 1)


# Cleanup

def discard_image(store: Optional[BlobStore], url: Optional[str]) -> bool:
    if store is None:
        if url:
            logger.warning("Image storage unavailable, keeping %s", url)
        return False
    ref = store.ref_for_url(url)
    if ref is None:
        return False
    try:
        store.delete(ref)
    except Exception as e:
        logger.warning("Failed to delete image %s: %s", url, e)
        return False
    return True


def discard_images(store: Optional[BlobStore], urls: Iterable[Optional[str]]) -> int:
    return sum(1 for url in urls if discard_image(store, url))


def superseded_urls(old: Iterable[str], new: Iterable[str]) -> List[str]:
    keep = set(new)
    return [url for url in old if url and url not in keep]


def image_urls(doc: Dict[str, Any], image_fields: Iterable[str], gallery_fields: Iterable[str]) -> List[str]:
    urls: List[str] = []
    for field in image_fields:
        if doc.get(field):
            urls.append(doc[field])
    for field in gallery_fields:
        urls.extend(url for url in doc.get(field) or [] if url)
    return urls


def release_superseded(
    store: Optional[BlobStore],
    before: Dict[str, Any],
    after: Dict[str, Any],
    image_fields: Iterable[str],
    gallery_fields: Iterable[str],
) -> int:
    # an image moved between fields (main <-> sub) is still referenced
    old = image_urls(before, image_fields, gallery_fields)
    new = image_urls(after, image_fields, gallery_fields)
    return discard_images(store, superseded_urls(old, new))
