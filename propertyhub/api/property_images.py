import logging
import os
import uuid
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from ..auth.jwt import get_current_user, require_active_subscription, require_roles
from ..config import settings
from ..constants import ALLOWED_IMAGE_EXTENSIONS, ROLE_PROPERTY_MANAGER
from ..core.errors import ApiError, ErrorCodes
from ..core.rate_limit import rate_limit_dependency
from ..models.models import Property, User
from ..schemas.schemas import (
    Pagination,
    PropertyImageCreate,
    PropertyImageDeleteResponse,
    PropertyImageListResponse,
    PropertyImageRead,
    PropertyImageReorder,
    PropertyImageReorderResponse,
    PropertyImageResponse,
    PropertyImageUpdate,
)
from ..services.access import ensure_property_access
from ..services.cache import collect_property_cache_user_ids, invalidate_property_caches
from ..services.image_support import PropertyImageSupport, is_missing_table_error
from ..services.properties import image_to_read, normalize_property_images
from ..services.property_images import (
    add_property_image,
    delete_property_image,
    get_property_image,
    load_property_images,
    reorder_property_images,
    update_property_image,
)
from ..services.storage import StoredFile, storage_service
from ..services.transactions import run_in_transaction
from .dependencies import clamp_int_param, get_db, load_property, require_image_support

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["property-images"])

upload_rate_limit = rate_limit_dependency(
    "property-image-upload",
    settings.image_upload_rate_limit,
    settings.image_upload_rate_window_seconds,
)


def _unavailable() -> ApiError:
    return ApiError(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Property image management is not available. Please apply the latest database migrations.",
        ErrorCodes.EXT_SERVICE_UNAVAILABLE,
    )


def _write_images(db: Session, support: PropertyImageSupport, operation):
    """Run an image write; a table that vanished mid-flight becomes a 503."""
    try:
        return run_in_transaction(db, operation)
    except DBAPIError as exc:
        if not is_missing_table_error(exc):
            raise
        support.mark_unsupported()
        raise _unavailable() from exc


def _writable_property(db: Session, property_id: int, user: User) -> Property:
    return ensure_property_access(load_property(db, property_id), user, require_write=True)


def _current_cover(tx: Session, property_id: int) -> Optional[str]:
    property_obj = tx.get(Property, property_id)
    return property_obj.image_url if property_obj is not None else None


@router.get("/{property_id}/images", response_model=PropertyImageListResponse)
def list_property_images(
    property_id: int,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    support: PropertyImageSupport = Depends(require_image_support),
) -> PropertyImageListResponse:
    property_obj = ensure_property_access(load_property(db, property_id), user)
    page_value = clamp_int_param(page, 1, 1, 10000)
    limit_value = clamp_int_param(limit, 50, 1, 50)

    images = support.run(db, lambda available: load_property_images(db, property_id) if available else None)
    normalized = normalize_property_images(property_obj, images)
    total = len(normalized)
    start = (page_value - 1) * limit_value
    total_pages = (total + limit_value - 1) // limit_value if total else 0
    return PropertyImageListResponse(
        images=normalized[start:start + limit_value],
        pagination=Pagination(
            page=page_value,
            limit=limit_value,
            total=total,
            total_pages=total_pages,
            has_more=start + limit_value < total,
        ),
    )


async def _store_upload(upload: UploadFile) -> StoredFile:
    extension = os.path.splitext(upload.filename or "")[1].lower()
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            f"Unsupported image type. Allowed extensions: {', '.join(ALLOWED_IMAGE_EXTENSIONS)}",
            ErrorCodes.FILE_UPLOAD_FAILED,
        )
    contents = await upload.read()
    if not contents:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Uploaded image is empty", ErrorCodes.FILE_UPLOAD_FAILED)
    if len(contents) > settings.max_image_upload_bytes:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            f"Image exceeds the {settings.max_image_upload_bytes // (1024 * 1024)}MB upload limit",
            ErrorCodes.FILE_UPLOAD_FAILED,
        )
    relative_path = f"properties/{uuid.uuid4().hex}{extension}"
    return await run_in_threadpool(storage_service.save_file, relative_path, contents, upload.content_type)


async def _read_image_body(request: Request) -> Tuple[Dict[str, Any], Optional[StoredFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        body: Dict[str, Any] = {key: value for key, value in form.items() if key != "image"}
        upload = form.get("image")
        if isinstance(upload, UploadFile):
            stored = await _store_upload(upload)
            body["imageUrl"] = stored.public_path
            return body, stored
        return body, None

    try:
        body = await request.json()
    except ValueError as exc:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Request body must be valid JSON", ErrorCodes.VAL_VALIDATION_ERROR) from exc
    if not isinstance(body, dict):
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Request body must be an object", ErrorCodes.VAL_VALIDATION_ERROR)
    return body, None


def _create_image(
    db: Session,
    support: PropertyImageSupport,
    property_obj: Property,
    user_id: int,
    payload: PropertyImageCreate,
) -> PropertyImageResponse:
    property_id = property_obj.id

    def _work(tx: Session) -> Tuple[PropertyImageRead, Optional[str]]:
        image = add_property_image(
            tx,
            property_id,
            payload.image_url,
            user_id,
            caption=payload.resolved_caption,
            category=payload.category,
            is_primary=payload.is_primary,
        )
        return image_to_read(image), _current_cover(tx, property_id)

    image, cover = _write_images(db, support, _work)
    invalidate_property_caches(collect_property_cache_user_ids(property_obj, user_id))
    return PropertyImageResponse(image=image, cover_image=cover)


@router.post("/{property_id}/images", response_model=PropertyImageResponse, status_code=status.HTTP_201_CREATED)
async def add_image(
    property_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    support: PropertyImageSupport = Depends(require_image_support),
    _: None = Depends(upload_rate_limit),
) -> PropertyImageResponse:
    property_obj = await run_in_threadpool(_writable_property, db, property_id, user)
    stored: Optional[StoredFile] = None
    try:
        body, stored = await _read_image_body(request)
        payload = PropertyImageCreate.model_validate(body)
        return await run_in_threadpool(_create_image, db, support, property_obj, user.id, payload)
    except Exception:
        if stored is not None:
            await storage_service.discard_quietly(stored.relative_path)
        raise


@router.patch("/{property_id}/images/{image_id}", response_model=PropertyImageResponse)
def update_image(
    property_id: int,
    image_id: int,
    payload: PropertyImageUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
    support: PropertyImageSupport = Depends(require_image_support),
) -> PropertyImageResponse:
    property_obj = _writable_property(db, property_id, user)
    changes = payload.changes()

    def _work(tx: Session) -> Tuple[Optional[PropertyImageRead], Optional[str]]:
        image = update_property_image(tx, property_id, image_id, changes)
        if image is None:
            return None, None
        return image_to_read(image), _current_cover(tx, property_id)

    image, cover = _write_images(db, support, _work)
    if image is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Property image not found", ErrorCodes.RES_PROPERTY_NOT_FOUND)
    invalidate_property_caches(collect_property_cache_user_ids(property_obj, user.id))
    return PropertyImageResponse(image=image, cover_image=cover)


@router.delete("/{property_id}/images/{image_id}", response_model=PropertyImageDeleteResponse)
def delete_image(
    property_id: int,
    image_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
    support: PropertyImageSupport = Depends(require_image_support),
) -> PropertyImageDeleteResponse:
    property_obj = _writable_property(db, property_id, user)
    image = get_property_image(db, property_id, image_id)
    if image is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Property image not found", ErrorCodes.RES_PROPERTY_NOT_FOUND)

    if storage_service.is_managed_path(image.image_url):
        try:
            storage_service.delete_file(image.image_url)
        except Exception as exc:
            logger.exception("Failed to delete stored image %s for property %s", image.image_url, property_id)
            raise ApiError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Failed to delete the image file. The image was not removed.",
                ErrorCodes.ERR_INTERNAL_SERVER,
            ) from exc

    def _work(tx: Session) -> Optional[str]:
        target = get_property_image(tx, property_id, image_id)
        if target is None:
            return _current_cover(tx, property_id)
        return delete_property_image(tx, property_id, target)

    cover = _write_images(db, support, _work)
    invalidate_property_caches(collect_property_cache_user_ids(property_obj, user.id))
    return PropertyImageDeleteResponse(message="Image deleted successfully", cover_image=cover)


@router.post("/{property_id}/images/reorder", response_model=PropertyImageReorderResponse)
def reorder_images(
    property_id: int,
    payload: PropertyImageReorder,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    support: PropertyImageSupport = Depends(require_image_support),
) -> PropertyImageReorderResponse:
    property_obj = _writable_property(db, property_id, user)

    def _work(tx: Session):
        images = reorder_property_images(tx, property_id, payload.ordered_image_ids)
        if images is None:
            return None, None
        return [image_to_read(image) for image in images], _current_cover(tx, property_id)

    images, cover = _write_images(db, support, _work)
    if images is None:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            "orderedImageIds must list every image of this property exactly once",
            ErrorCodes.VAL_VALIDATION_ERROR,
        )
    invalidate_property_caches(collect_property_cache_user_ids(property_obj, user.id))
    return PropertyImageReorderResponse(images=images, cover_image=cover)
