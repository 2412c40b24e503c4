from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.db.models import SiteRequest
from app.db.repositories.image_drafts import ImageDraftsRepository
from app.db.repositories.site_requests import SiteRequestsRepository
from app.services.errors import NotFound, ValidationError
from app.services.media_storage import MediaStorage, StorageScope

logger = logging.getLogger(__name__)

MAX_ROLE_LENGTH = 100


@dataclass(frozen=True)
class DraftSnapshot:
    images_draft: dict[str, dict[str, Any]]
    images_version: int


@dataclass(frozen=True)
class DraftSaveResult:
    image: dict[str, Any]
    images_draft: dict[str, dict[str, Any]]
    images_version: int


def storage_scope_for(request: SiteRequest) -> StorageScope:
    if request.session_id:
        return StorageScope.for_session(request.session_id)
    return StorageScope.for_request(request.id)


def _validate_role(role: str) -> str:
    cleaned = (role or "").strip()
    if not cleaned:
        raise ValidationError("Image role is required")
    if len(cleaned) > MAX_ROLE_LENGTH:
        raise ValidationError(f"Image role must be at most {MAX_ROLE_LENGTH} characters")
    return cleaned


class ImageDraftService:
    def __init__(self, session: Session, storage: MediaStorage) -> None:
        self.session = session
        self.storage = storage
        self.requests_repo = SiteRequestsRepository(session)
        self.drafts_repo = ImageDraftsRepository(session)

    def _require_request(self, request_id: str) -> SiteRequest:
        request = self.requests_repo.get(request_id)
        if not request:
            raise NotFound("Request not found", context={"request_id": request_id})
        return request

    def _snapshot(self, request_id: str) -> DraftSnapshot:
        drafts = self.drafts_repo.list_for_request(request_id)
        return DraftSnapshot(
            images_draft={draft.role: draft.as_slot() for draft in drafts},
            images_version=self.drafts_repo.get_version(request_id),
        )

    def save_draft(self, request_id: str, *, role: str, filename: str, data_url: str) -> DraftSaveResult:
        role = _validate_role(role)
        request = self._require_request(request_id)
        request_id = request.id
        scope = storage_scope_for(request)
        # End the read transaction; the storage write below holds no database locks.
        self.session.commit()

        # Decoding and validation inside save() raise before anything is written.
        stored = self.storage.save(data_url, scope=scope, filename=filename, role=role)

        draft = self.drafts_repo.upsert(
            request_id=request_id,
            role=role,
            url=stored.url,
            filename=stored.filename,
            content_type=stored.content_type,
            size_bytes=stored.size,
        )
        image = draft.as_slot()
        snapshot = self._snapshot(request_id)
        logger.info(
            "image_drafts.saved",
            extra={
                "request_id": request_id,
                "role": role,
                "key": stored.key,
                "images_version": snapshot.images_version,
            },
        )
        return DraftSaveResult(
            image=image,
            images_draft=snapshot.images_draft,
            images_version=snapshot.images_version,
        )

    def get_drafts(self, request_id: str) -> DraftSnapshot:
        request = self._require_request(request_id)
        return self._snapshot(request.id)

    def delete_draft(self, request_id: str, *, role: str) -> DraftSnapshot:
        request = self._require_request(request_id)
        deleted = self.drafts_repo.delete(request_id=request.id, role=role)
        if deleted:
            logger.info("image_drafts.deleted", extra={"request_id": request.id, "role": role})
        return self._snapshot(request.id)
