from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import SiteRequest, SiteRequestImageDraft, utcnow
from app.db.repositories.base import Repository


class ImageDraftsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def list_for_request(self, request_id: str) -> list[SiteRequestImageDraft]:
        stmt = (
            select(SiteRequestImageDraft)
            .where(SiteRequestImageDraft.request_id == request_id)
            .order_by(SiteRequestImageDraft.role.asc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, *, request_id: str, role: str) -> Optional[SiteRequestImageDraft]:
        stmt = select(SiteRequestImageDraft).where(
            SiteRequestImageDraft.request_id == request_id,
            SiteRequestImageDraft.role == role,
        )
        return self.session.scalars(stmt).first()

    def get_version(self, request_id: str) -> int:
        stmt = select(SiteRequest.images_version).where(SiteRequest.id == request_id)
        return int(self.session.scalar(stmt) or 0)

    def _bump_version(self, request_id: str) -> None:
        # Arithmetic in SQL so concurrent writers never lose an increment.
        stmt = (
            update(SiteRequest)
            .where(SiteRequest.id == request_id)
            .values(images_version=SiteRequest.images_version + 1)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def _apply(
        self,
        *,
        request_id: str,
        role: str,
        url: str,
        filename: str,
        content_type: Optional[str],
        size_bytes: Optional[int],
    ) -> None:
        draft = self.get(request_id=request_id, role=role)
        if draft is None:
            draft = SiteRequestImageDraft(request_id=request_id, role=role, url=url, filename=filename)
            self.session.add(draft)
        draft.url = url
        draft.filename = filename
        draft.content_type = content_type
        draft.size_bytes = size_bytes
        draft.updated_at = utcnow()
        self.session.flush()

    def upsert(
        self,
        *,
        request_id: str,
        role: str,
        url: str,
        filename: str,
        content_type: Optional[str] = None,
        size_bytes: Optional[int] = None,
    ) -> SiteRequestImageDraft:
        """
        Insert or replace the slot for ``role`` and bump the request's image version.

        Both writes commit together. A concurrent insert of the same role is retried once
        as an update.
        """
        fields = dict(
            request_id=request_id,
            role=role,
            url=url,
            filename=filename,
            content_type=content_type,
            size_bytes=size_bytes,
        )
        try:
            self._apply(**fields)
        except IntegrityError:
            self.session.rollback()
            self._apply(**fields)
        self._bump_version(request_id)
        self.session.commit()
        draft = self.get(request_id=request_id, role=role)
        if draft is None:
            raise RuntimeError(f"Image draft '{role}' vanished after save for request {request_id}")
        return draft

    def delete(self, *, request_id: str, role: str) -> bool:
        stmt = delete(SiteRequestImageDraft).where(
            SiteRequestImageDraft.request_id == request_id,
            SiteRequestImageDraft.role == role,
        )
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount == 0:
            self.session.rollback()
            return False
        self._bump_version(request_id)
        self.session.commit()
        return True
