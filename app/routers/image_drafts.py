from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, require_admin
from app.db.deps import get_session
from app.schemas.site_requests import ImageDraftSaveRequest
from app.services.image_drafts import DraftSnapshot, ImageDraftService
from app.services.media_storage import MediaStorage, get_media_storage
from app.services.site_requests import as_utc

router = APIRouter(prefix="/requests", tags=["image-drafts"])


def _serialize_slot(slot: dict[str, Any]) -> dict[str, Any]:
    return {**slot, "updatedAt": as_utc(slot.get("updatedAt"))}


def _serialize_snapshot(snapshot: DraftSnapshot) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "imagesDraft": {role: _serialize_slot(slot) for role, slot in snapshot.images_draft.items()},
            "imagesVersion": snapshot.images_version,
        }
    )


@router.put("/{request_id}/images-draft")
def save_image_draft(
    request_id: str,
    payload: ImageDraftSaveRequest,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> dict[str, Any]:
    result = ImageDraftService(session, storage).save_draft(
        request_id,
        role=payload.role,
        filename=payload.filename or payload.role,
        data_url=payload.dataUrl,
    )
    return jsonable_encoder(
        {
            "image": _serialize_slot(result.image),
            "imagesDraft": {role: _serialize_slot(slot) for role, slot in result.images_draft.items()},
            "imagesVersion": result.images_version,
        }
    )


@router.get("/{request_id}/images-draft")
def get_image_drafts(
    request_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> dict[str, Any]:
    return _serialize_snapshot(ImageDraftService(session, storage).get_drafts(request_id))


@router.delete("/{request_id}/images-draft/{role}")
def delete_image_draft(
    request_id: str,
    role: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> dict[str, Any]:
    snapshot = ImageDraftService(session, storage).delete_draft(request_id, role=role)
    return {"ok": True, **_serialize_snapshot(snapshot)}
