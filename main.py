import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from accounts import router as accounts_router
from catalog import ENTITY_KINDS, routers as catalog_routers
from config import LOG_LEVEL
from database import ensure_indexes, get_db
from schemas import CheckSlugRequest, DeleteImageRequest
from security import AuthContext, require_admin
from storage import (
    BlobStore,
    build_key,
    discard_image,
    optional_blob_store,
    read_upload,
    require_blob_store,
    validate_folder,
    validate_image,
)
from validation import check_identifier

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except PyMongoError as e:
            logger.warning("Could not create indexes: %s", e)
    yield


app = FastAPI(title="Catalog Admin API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


# Routes
@app.get("/")
def read_root():
    return {"message": "Catalog Admin API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "❌ Not Available"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Admin utilities
@app.post("/api/admin/check-slug")
def check_slug(
    payload: CheckSlugRequest,
    admin: AuthContext = Depends(require_admin),
    db: Database = Depends(get_db),
):
    kind = ENTITY_KINDS.get(payload.entityType or "")
    if payload.slug is None or not payload.slug.strip():
        return {"isValid": False, "isUnique": False, "message": "Slug cannot be empty", "entity": payload.entityType}
    if kind is None:
        raise HTTPException(status_code=400, detail="Invalid entity type")
    return check_identifier(db, kind, payload.slug, payload.excludeId).model_dump()


@app.post("/api/admin/upload-image")
def upload_image(
    image: Optional[UploadFile] = File(None),
    folder: str = Form("uploads"),
    deleteUrl: Optional[str] = Form(None),
    admin: AuthContext = Depends(require_admin),
    store: Optional[BlobStore] = Depends(optional_blob_store),
):
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided.")
    data = read_upload(image.file)
    validate_image(image.content_type, len(data))
    validate_folder(folder)
    store = require_blob_store(store)

    key = build_key(folder, image.filename, image.content_type)
    try:
        ref = store.put(key, data, image.content_type)
    except (BotoCoreError, ClientError):
        logger.exception("Image upload failed for %s", key)
        raise HTTPException(status_code=500, detail="Failed to upload image. Please try again.")

    # the replaced image goes only once the new one is stored
    if deleteUrl:
        discard_image(store, deleteUrl)
    return {
        "success": True,
        "message": "Image uploaded successfully!",
        "imageUrl": ref.to_url(),
        "s3Key": ref.key,
        "folder": folder,
    }


@app.delete("/api/admin/upload-image")
def delete_image(
    payload: DeleteImageRequest,
    admin: AuthContext = Depends(require_admin),
    store: Optional[BlobStore] = Depends(optional_blob_store),
):
    if not payload.imageUrl:
        raise HTTPException(status_code=400, detail="Image URL is required.")
    store = require_blob_store(store)
    ref = store.ref_for_url(payload.imageUrl)
    if ref is None:
        raise HTTPException(status_code=400, detail="Invalid image URL.")
    try:
        store.delete(ref)
    except (BotoCoreError, ClientError):
        logger.exception("Image delete failed for %s", ref.key)
        raise HTTPException(status_code=500, detail="Failed to delete image. Please try again.")
    return {"success": True, "message": "Image deleted successfully.", "s3Key": ref.key}


app.include_router(accounts_router)
for router in catalog_routers:
    app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
