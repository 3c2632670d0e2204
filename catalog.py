"""
Admin CRUD for the catalog entity kinds.

Every kind (brand, category, component, component item, accessory) is
described by an EntityKind: its collection, its identifier field, its rule
table, the fields that hold image URLs and the references to populate. The
handlers below are shared by all kinds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, serialize_doc, utcnow
from schemas import Accessory, Brand, Category, Component, ComponentItem
from security import AuthContext, require_admin
from storage import BlobStore, discard_images, image_urls, optional_blob_store, release_superseded
from validation import NAME_STYLE, SLUG_PATTERN, SLUG_STYLE, FieldRule, find_conflict, validate_fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reference:
    field: str
    collection: str
    label: str
    projection: Tuple[str, ...]


@dataclass(frozen=True)
class EntityKind:
    name: str
    label: str
    path: str
    collection: str
    schema: Type[BaseModel]
    identifier: str
    identifier_style: str
    display_field: str
    rules: Tuple[FieldRule, ...]
    conflict_message: str
    plural_key: str
    image_fields: Tuple[str, ...] = ()
    gallery_fields: Tuple[str, ...] = ()
    references: Tuple[Reference, ...] = ()


def _slug_rule() -> FieldRule:
    return FieldRule(
        "slug",
        "Slug",
        min_length=2,
        max_length=200,
        pattern=SLUG_PATTERN,
        pattern_message="Slug must be lowercase with hyphens only (no spaces or special characters).",
    )


BRAND = EntityKind(
    name="brand",
    label="Brand",
    path="brands",
    collection="brand",
    schema=Brand,
    identifier="brandName",
    identifier_style=NAME_STYLE,
    display_field="brandName",
    rules=(
        FieldRule("brandName", "Brand name", min_length=2, max_length=100),
        FieldRule("brandDescription", "Brand description", min_length=10, max_length=500),
        FieldRule("brandImage", "Brand image URL"),
    ),
    conflict_message="A brand with this name already exists.",
    plural_key="brands",
    image_fields=("brandImage",),
)

CATEGORY = EntityKind(
    name="category",
    label="Category",
    path="categories",
    collection="category",
    schema=Category,
    identifier="categoryName",
    identifier_style=NAME_STYLE,
    display_field="categoryName",
    rules=(
        FieldRule("categoryName", "Category name", min_length=2, max_length=100),
        FieldRule("categoryDescription", "Category description", min_length=10, max_length=500),
        FieldRule("categoryImage", "Category image URL"),
    ),
    conflict_message="A category with this name already exists.",
    plural_key="categories",
    image_fields=("categoryImage",),
)

COMPONENT = EntityKind(
    name="component",
    label="Component",
    path="components",
    collection="component",
    schema=Component,
    identifier="componentName",
    identifier_style=NAME_STYLE,
    display_field="componentName",
    rules=(
        FieldRule("componentName", "Component name", min_length=2, max_length=100),
        FieldRule("filterLabels", "Filter label", kind="label_list"),
    ),
    conflict_message="A component with this name already exists.",
    plural_key="components",
)

COMPONENT_ITEM = EntityKind(
    name="componentItem",
    label="Component item",
    path="component-items",
    collection="componentitem",
    schema=ComponentItem,
    identifier="slug",
    identifier_style=SLUG_STYLE,
    display_field="itemName",
    rules=(
        FieldRule("itemName", "Item name", min_length=2, max_length=150),
        _slug_rule(),
        FieldRule("component", "Component", kind="object_id"),
        FieldRule("filterValues", "Filter value", kind="pairs", pair_keys=("filterLabel", "filterValue")),
        FieldRule("brand", "Brand", kind="object_id", required=False),
        FieldRule("model", "Model", min_length=2, max_length=100),
        FieldRule("unitPrice", "Unit price", kind="number", minimum=0),
        FieldRule(
            "availability",
            "Availability",
            kind="choice",
            required=False,
            choices=("InStock", "OutOfStock", "PreOrder"),
            default="InStock",
        ),
        FieldRule("description", "Description", min_length=10, max_length=2000),
        FieldRule("specifications", "Specification", kind="pairs", required=False),
        FieldRule("mainImage", "Main image"),
        FieldRule("subImages", "Sub images", kind="url_list", required=False),
        FieldRule("isNewArrival", "New arrival", kind="flag", required=False, default=False),
    ),
    conflict_message="An item with this slug already exists.",
    plural_key="componentItems",
    image_fields=("mainImage",),
    gallery_fields=("subImages",),
    references=(
        Reference("component", "component", "Component", ("componentName", "filterLabels")),
        Reference("brand", "brand", "Brand", ("brandName",)),
    ),
)

ACCESSORY = EntityKind(
    name="accessory",
    label="Accessory",
    path="accessories",
    collection="accessory",
    schema=Accessory,
    identifier="slug",
    identifier_style=SLUG_STYLE,
    display_field="accessoryName",
    rules=(
        FieldRule("accessoryName", "Accessory name", min_length=2, max_length=150),
        _slug_rule(),
        FieldRule("brand", "Brand", kind="object_id", required=False),
        FieldRule("category", "Category", kind="object_id", required=False),
        FieldRule("description", "Description", min_length=10, max_length=1500),
        FieldRule("offerPrice", "Offer price", kind="number", minimum=0),
        FieldRule("oldPrice", "Old price", kind="number", required=False, minimum=0),
        FieldRule("mainImage", "Main image"),
        FieldRule("subImages", "Sub images", kind="url_list", required=False),
        FieldRule("isNewArrival", "New arrival", kind="flag", required=False, default=False),
    ),
    conflict_message="An accessory with this slug already exists.",
    plural_key="accessories",
    image_fields=("mainImage",),
    gallery_fields=("subImages",),
    references=(
        Reference("brand", "brand", "Brand", ("brandName",)),
        Reference("category", "category", "Category", ("categoryName",)),
    ),
)

ENTITY_KINDS: Dict[str, EntityKind] = {
    kind.name: kind for kind in (ACCESSORY, BRAND, CATEGORY, COMPONENT, COMPONENT_ITEM)
}


# Helpers

def parse_id(kind: EntityKind, entity_id: str) -> ObjectId:
    if not ObjectId.is_valid(entity_id):
        raise HTTPException(status_code=400, detail=f"Invalid {kind.label.lower()} ID.")
    return ObjectId(entity_id)


def find_or_404(db: Database, kind: EntityKind, obj_id: ObjectId) -> Dict[str, Any]:
    doc = db[kind.collection].find_one({"_id": obj_id})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{kind.label} not found.")
    return doc


def check_references(db: Database, kind: EntityKind, data: Dict[str, Any]) -> None:
    for ref in kind.references:
        value = data.get(ref.field)
        if value is not None and db[ref.collection].find_one({"_id": value}, {"_id": 1}) is None:
            raise HTTPException(status_code=400, detail=f"{ref.label} not found.")


def ensure_identifier_available(
    db: Database, kind: EntityKind, value: str, exclude_id: Optional[ObjectId] = None
) -> None:
    if find_conflict(db, kind, value, exclude_id):
        raise HTTPException(status_code=409, detail=kind.conflict_message)


def build_document(kind: EntityKind, data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return kind.schema(**data).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])


def populate(db: Database, kind: EntityKind, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    docs = [dict(d) for d in docs]
    for ref in kind.references:
        ids = list({d[ref.field] for d in docs if isinstance(d.get(ref.field), ObjectId)})
        found: Dict[ObjectId, Dict[str, Any]] = {}
        if ids:
            projection = {field: 1 for field in ref.projection}
            for related in db[ref.collection].find({"_id": {"$in": ids}}, projection):
                found[related["_id"]] = serialize_doc(related)
        for d in docs:
            d[ref.field] = found.get(d.get(ref.field))
    return [serialize_doc(d) for d in docs]


def load_populated(db: Database, kind: EntityKind, obj_id: ObjectId) -> Dict[str, Any]:
    return populate(db, kind, [find_or_404(db, kind, obj_id)])[0]


# Operations

def list_entities(db: Database, kind: EntityKind) -> List[Dict[str, Any]]:
    return populate(db, kind, get_documents(db, kind.collection, newest_first=True))


def create_entity(db: Database, kind: EntityKind, payload: Any) -> Dict[str, Any]:
    data = validate_fields(kind.rules, payload)
    check_references(db, kind, data)
    ensure_identifier_available(db, kind, data[kind.identifier])
    doc = build_document(kind, data)
    try:
        entity_id = create_document(db, kind.collection, doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=kind.conflict_message)
    logger.info("Created %s %s", kind.name, entity_id)
    return load_populated(db, kind, ObjectId(entity_id))


def get_entity(db: Database, kind: EntityKind, entity_id: str) -> Dict[str, Any]:
    return load_populated(db, kind, parse_id(kind, entity_id))


def update_entity(db: Database, store: Optional[BlobStore], kind: EntityKind, entity_id: str, payload: Any) -> Dict[str, Any]:
    obj_id = parse_id(kind, entity_id)
    data = validate_fields(kind.rules, payload)
    existing = find_or_404(db, kind, obj_id)
    check_references(db, kind, data)
    ensure_identifier_available(db, kind, data[kind.identifier], exclude_id=obj_id)

    changes = build_document(kind, data)
    changes.pop("isActive", None)
    changes["updated_at"] = utcnow()
    try:
        db[kind.collection].update_one({"_id": obj_id}, {"$set": changes})
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=kind.conflict_message)

    released = release_superseded(store, existing, changes, kind.image_fields, kind.gallery_fields)
    logger.info("Updated %s %s (%d old images released)", kind.name, entity_id, released)
    return load_populated(db, kind, obj_id)


def delete_entity(db: Database, store: Optional[BlobStore], kind: EntityKind, entity_id: str) -> None:
    obj_id = parse_id(kind, entity_id)
    existing = find_or_404(db, kind, obj_id)
    released = discard_images(store, image_urls(existing, kind.image_fields, kind.gallery_fields))
    db[kind.collection].delete_one({"_id": obj_id})
    logger.info("Deleted %s %s (%d images released)", kind.name, entity_id, released)


# Routes

def build_router(kind: EntityKind) -> APIRouter:
    router = APIRouter(prefix=f"/api/admin/{kind.path}", tags=[kind.path])

    @router.get("")
    def list_route(admin: AuthContext = Depends(require_admin), db: Database = Depends(get_db)):
        return {"success": True, kind.plural_key: list_entities(db, kind)}

    @router.post("", status_code=201)
    def create_route(
        payload: Dict[str, Any] = Body(...),
        admin: AuthContext = Depends(require_admin),
        db: Database = Depends(get_db),
    ):
        entity = create_entity(db, kind, payload)
        return {"success": True, "message": f"{kind.label} created successfully!", kind.name: entity}

    @router.get("/{entity_id}")
    def get_route(entity_id: str, admin: AuthContext = Depends(require_admin), db: Database = Depends(get_db)):
        return {"success": True, kind.name: get_entity(db, kind, entity_id)}

    @router.put("/{entity_id}")
    def update_route(
        entity_id: str,
        payload: Dict[str, Any] = Body(...),
        admin: AuthContext = Depends(require_admin),
        db: Database = Depends(get_db),
        store: Optional[BlobStore] = Depends(optional_blob_store),
    ):
        entity = update_entity(db, store, kind, entity_id, payload)
        return {"success": True, "message": f"{kind.label} updated successfully!", kind.name: entity}

    @router.delete("/{entity_id}")
    def delete_route(
        entity_id: str,
        admin: AuthContext = Depends(require_admin),
        db: Database = Depends(get_db),
        store: Optional[BlobStore] = Depends(optional_blob_store),
    ):
        delete_entity(db, store, kind, entity_id)
        return {"success": True, "message": f"{kind.label} deleted successfully!", "id": entity_id}

    return router


routers = [build_router(kind) for kind in ENTITY_KINDS.values()]
