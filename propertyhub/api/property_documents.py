import logging
from io import BytesIO
from typing import List, Optional, Union

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import RedirectResponse, StreamingResponse
from sqlalchemy.orm import Session, selectinload

from ..auth.jwt import get_current_user, require_active_subscription, require_roles
from ..constants import DOCUMENT_ACCESS_LEVELS, DOCUMENT_CATEGORIES, ROLE_PROPERTY_MANAGER
from ..core.errors import ApiError, ErrorCodes
from ..models.models import Property, PropertyDocument, Unit, User
from ..schemas.schemas import (
    PropertyDocumentCreate,
    PropertyDocumentListResponse,
    PropertyDocumentRead,
    PropertyDocumentResponse,
    PropertyDocumentsCreated,
    SuccessResponse,
)
from ..services.access import can_view_document, document_visibility_filter, ensure_property_access
from ..services.audit import audit_log
from ..services.properties import user_summary
from ..services.storage import storage_service
from ..services.transactions import run_in_transaction
from .dependencies import get_db, load_property

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["property-documents"])


def _download_path(document: PropertyDocument) -> str:
    return f"/properties/{document.property_id}/documents/{document.id}/download"


def _document_to_read(document: PropertyDocument) -> PropertyDocumentRead:
    return PropertyDocumentRead(
        id=document.id,
        property_id=document.property_id,
        unit_id=document.unit_id,
        file_name=document.file_name,
        file_url=document.file_url,
        file_size=document.file_size,
        mime_type=document.mime_type,
        category=document.category,
        description=document.description,
        access_level=document.access_level,
        uploader_id=document.uploader_id,
        uploader=user_summary(document.uploader),
        uploaded_at=document.uploaded_at,
        download_url=_download_path(document),
    )


def _readable_property(db: Session, property_id: int, user: User) -> Property:
    """Property readable by ``user``; documents are then narrowed by visibility."""
    property_obj = load_property(db, property_id)
    if property_obj is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Property not found", ErrorCodes.RES_PROPERTY_NOT_FOUND)
    return ensure_property_access(property_obj, user)


def _visible_document(db: Session, property_id: int, document_id: int, user: User) -> PropertyDocument:
    _readable_property(db, property_id, user)
    document = (
        db.query(PropertyDocument)
        .options(selectinload(PropertyDocument.uploader))
        .filter(PropertyDocument.id == document_id, PropertyDocument.property_id == property_id)
        .first()
    )
    if document is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Document not found", ErrorCodes.RES_NOT_FOUND)
    if not can_view_document(db, document, user):
        raise ApiError(status.HTTP_403_FORBIDDEN, "You do not have access to this document", ErrorCodes.ACC_ACCESS_DENIED)
    return document


@router.get("/{property_id}/documents", response_model=PropertyDocumentListResponse)
def list_property_documents(
    property_id: int,
    unit_id: Optional[int] = Query(None, alias="unitId"),
    category: Optional[str] = None,
    access_level: Optional[str] = Query(None, alias="accessLevel"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PropertyDocumentListResponse:
    _readable_property(db, property_id, user)
    query = (
        db.query(PropertyDocument)
        .options(selectinload(PropertyDocument.uploader))
        .filter(document_visibility_filter(db, user, property_id))
    )
    if unit_id is not None:
        query = query.filter(PropertyDocument.unit_id == unit_id)
    if category and category.upper() in DOCUMENT_CATEGORIES:
        query = query.filter(PropertyDocument.category == category.upper())
    if access_level and access_level.upper() in DOCUMENT_ACCESS_LEVELS:
        query = query.filter(PropertyDocument.access_level == access_level.upper())
    documents = query.order_by(PropertyDocument.uploaded_at.desc(), PropertyDocument.id.desc()).all()
    return PropertyDocumentListResponse(documents=[_document_to_read(document) for document in documents])


@router.get("/{property_id}/documents/{document_id}", response_model=PropertyDocumentResponse)
def get_property_document(
    property_id: int,
    document_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PropertyDocumentResponse:
    document = _visible_document(db, property_id, document_id, user)
    return PropertyDocumentResponse(document=_document_to_read(document))


@router.get("/{property_id}/documents/{document_id}/download")
def download_property_document(
    property_id: int,
    document_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    document = _visible_document(db, property_id, document_id, user)
    if not storage_service.is_managed_path(document.file_url):
        return RedirectResponse(document.file_url, status_code=status.HTTP_302_FOUND)
    stored = storage_service.retrieve_file(document.file_url)
    filename = document.file_name.replace('"', "")
    return StreamingResponse(
        BytesIO(stored.content),
        media_type=stored.content_type or document.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/{property_id}/documents",
    response_model=Union[PropertyDocumentResponse, PropertyDocumentsCreated],
    status_code=status.HTTP_201_CREATED,
)
def create_property_documents(
    property_id: int,
    payload: Union[PropertyDocumentCreate, List[PropertyDocumentCreate]] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
) -> Union[PropertyDocumentResponse, PropertyDocumentsCreated]:
    ensure_property_access(load_property(db, property_id), user, require_write=True)
    entries = payload if isinstance(payload, list) else [payload]
    if not entries:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "At least one document is required", ErrorCodes.VAL_VALIDATION_ERROR)

    unit_ids = {entry.unit_id for entry in entries if entry.unit_id is not None}
    if unit_ids:
        found = {
            row[0]
            for row in db.query(Unit.id).filter(Unit.id.in_(unit_ids), Unit.property_id == property_id).all()
        }
        if found != unit_ids:
            raise ApiError(
                status.HTTP_400_BAD_REQUEST,
                "Unit does not belong to this property",
                ErrorCodes.VAL_VALIDATION_ERROR,
                details={"unitIds": sorted(unit_ids - found)},
            )

    user_id = user.id

    def _work(tx: Session) -> List[int]:
        records = [
            PropertyDocument(
                property_id=property_id,
                unit_id=entry.unit_id,
                file_name=entry.file_name.strip(),
                file_url=entry.file_url,
                file_size=entry.file_size,
                mime_type=entry.mime_type,
                category=entry.category,
                description=entry.description,
                access_level=entry.access_level,
                uploader_id=user_id,
            )
            for entry in entries
        ]
        tx.add_all(records)
        tx.flush()
        return [record.id for record in records]

    document_ids = run_in_transaction(db, _work)
    documents = (
        db.query(PropertyDocument)
        .options(selectinload(PropertyDocument.uploader))
        .filter(PropertyDocument.id.in_(document_ids))
        .order_by(PropertyDocument.id)
        .all()
    )
    audit_log(
        db_session=db,
        actor_user_id=user_id,
        action="property.documents.create",
        target_entity_type="property",
        target_entity_id=str(property_id),
        after={"document_ids": document_ids},
    )
    reads = [_document_to_read(document) for document in documents]
    if isinstance(payload, list):
        return PropertyDocumentsCreated(documents=reads)
    return PropertyDocumentResponse(document=reads[0])


@router.delete("/{property_id}/documents/{document_id}", response_model=SuccessResponse)
def delete_property_document(
    property_id: int,
    document_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
) -> SuccessResponse:
    ensure_property_access(load_property(db, property_id), user, require_write=True)
    document = (
        db.query(PropertyDocument)
        .filter(PropertyDocument.id == document_id, PropertyDocument.property_id == property_id)
        .first()
    )
    if document is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Document not found", ErrorCodes.RES_NOT_FOUND)
    before = {"file_name": document.file_name, "file_url": document.file_url, "property_id": property_id}

    if storage_service.is_managed_path(document.file_url):
        try:
            storage_service.delete_file(document.file_url)
        except Exception as exc:
            logger.exception("Failed to delete stored document %s", document.file_url)
            raise ApiError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Failed to delete the document file. The document was not removed.",
                ErrorCodes.ERR_INTERNAL_SERVER,
            ) from exc

    def _work(tx: Session) -> None:
        tx.query(PropertyDocument).filter(PropertyDocument.id == document_id).delete(synchronize_session=False)

    run_in_transaction(db, _work)
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.documents.delete",
        target_entity_type="property_document",
        target_entity_id=str(document_id),
        before=before,
    )
    return SuccessResponse(message="Document deleted successfully")
