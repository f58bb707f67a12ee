from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session, selectinload

from ..auth.jwt import get_current_user, require_active_subscription, require_roles
from ..constants import ROLE_PROPERTY_MANAGER
from ..core.errors import ApiError, ErrorCodes
from ..models.models import PropertyNote, User
from ..schemas.schemas import (
    NoteAuthor,
    PropertyNoteListResponse,
    PropertyNoteRead,
    PropertyNoteResponse,
    PropertyNoteWrite,
    SuccessResponse,
)
from ..services.access import ensure_property_access
from ..services.audit import audit_log
from .dependencies import get_db, load_property

router = APIRouter(prefix="/properties", tags=["property-notes"])


def _note_to_read(note: PropertyNote) -> PropertyNoteRead:
    author = note.author
    return PropertyNoteRead(
        id=note.id,
        property_id=note.property_id,
        content=note.content,
        author_id=note.author_id,
        author=NoteAuthor(id=author.id, name=author.full_name, role=author.role) if author is not None else None,
        created_at=note.created_at,
        updated_at=note.updated_at,
    )


def _get_note(db: Session, property_id: int, note_id: int) -> PropertyNote:
    note = (
        db.query(PropertyNote)
        .options(selectinload(PropertyNote.author))
        .filter(PropertyNote.id == note_id, PropertyNote.property_id == property_id)
        .first()
    )
    if note is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Note not found", ErrorCodes.RES_NOT_FOUND)
    return note


def _authored_note(db: Session, property_id: int, note_id: int, user: User) -> PropertyNote:
    ensure_property_access(load_property(db, property_id), user, require_write=True)
    note = _get_note(db, property_id, note_id)
    if note.author_id != user.id:
        raise ApiError(status.HTTP_403_FORBIDDEN, "Only the author can change this note", ErrorCodes.ACC_ACCESS_DENIED)
    return note


@router.get("/{property_id}/notes", response_model=PropertyNoteListResponse)
def list_property_notes(
    property_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> PropertyNoteListResponse:
    ensure_property_access(load_property(db, property_id), user)
    notes = (
        db.query(PropertyNote)
        .options(selectinload(PropertyNote.author))
        .filter(PropertyNote.property_id == property_id)
        .order_by(PropertyNote.created_at.desc(), PropertyNote.id.desc())
        .all()
    )
    return PropertyNoteListResponse(notes=[_note_to_read(note) for note in notes])


@router.post("/{property_id}/notes", response_model=PropertyNoteResponse, status_code=status.HTTP_201_CREATED)
def create_property_note(
    property_id: int,
    payload: PropertyNoteWrite,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
) -> PropertyNoteResponse:
    ensure_property_access(load_property(db, property_id), user, require_write=True)
    note = PropertyNote(property_id=property_id, author_id=user.id, content=payload.content)
    db.add(note)
    db.commit()
    note = _get_note(db, property_id, note.id)
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.note.create",
        target_entity_type="property_note",
        target_entity_id=str(note.id),
    )
    return PropertyNoteResponse(note=_note_to_read(note))


@router.patch("/{property_id}/notes/{note_id}", response_model=PropertyNoteResponse)
def update_property_note(
    property_id: int,
    note_id: int,
    payload: PropertyNoteWrite,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
) -> PropertyNoteResponse:
    note = _authored_note(db, property_id, note_id, user)
    before = {"content": note.content}
    note.content = payload.content
    db.commit()
    note = _get_note(db, property_id, note_id)
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.note.update",
        target_entity_type="property_note",
        target_entity_id=str(note_id),
        before=before,
        after={"content": payload.content},
    )
    return PropertyNoteResponse(note=_note_to_read(note))


@router.delete("/{property_id}/notes/{note_id}", response_model=SuccessResponse)
def delete_property_note(
    property_id: int,
    note_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(ROLE_PROPERTY_MANAGER)),
    _: User = Depends(require_active_subscription),
) -> SuccessResponse:
    note = _authored_note(db, property_id, note_id, user)
    before = {"content": note.content}
    db.delete(note)
    db.commit()
    audit_log(
        db_session=db,
        actor_user_id=user.id,
        action="property.note.delete",
        target_entity_type="property_note",
        target_entity_id=str(note_id),
        before=before,
    )
    return SuccessResponse(message="Note deleted successfully")
