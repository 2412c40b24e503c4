from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.enums import RequestTypeEnum
from app.db.models import SiteRequest, SiteSessionSection, utcnow
from app.db.repositories.site_sessions import SiteSessionsRepository
from app.schemas.site_document import (
    BlogSection,
    DOCUMENT_SECTIONS,
    LIST_SECTION_MODELS,
    OBJECT_SECTION_MODELS,
)
from app.services.errors import PartialFailure, StorageFailure, ValidationError
from app.services.media_storage import MediaStorage, StorageScope

logger = logging.getLogger(__name__)

_DEFAULT_INLINE_CONTENT_TYPE = "image/png"


@dataclass
class MergeResult:
    session_id: str
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    image_roles: list[str] = field(default_factory=list)

    def as_details(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "applied": self.applied,
            "skipped": self.skipped,
            "imageRoles": self.image_roles,
        }


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


class ContentMerger:
    """
    Folds a completed request's generated content into its site session document.

    Each section follows a fixed strategy: object sections (hero, about, seo, contact) and
    list sections (services, testimonials, faq) are replaced only by non-empty incoming
    data, the blog is replaced only when incoming articles are non-empty, and images are
    unioned by role. Absent or empty input never erases what the customer already has, so
    applying the same payload twice yields the same document.
    """

    def __init__(self, session: Session, storage: MediaStorage) -> None:
        self.session = session
        self.storage = storage
        self.sessions_repo = SiteSessionsRepository(session)

    def apply(self, request: SiteRequest) -> Optional[MergeResult]:
        if not request.session_id:
            return None
        content = request.generated_content
        if not isinstance(content, dict) or not content:
            return MergeResult(session_id=request.session_id)

        try:
            if self.sessions_repo.get(request.session_id) is None:
                raise PartialFailure(
                    "Site session not found",
                    context={"request_id": request.id, "session_id": request.session_id},
                )
            if request.request_type == RequestTypeEnum.images:
                result = MergeResult(session_id=request.session_id)
                self._merge_images(request, content, result)
            else:
                result = self._merge_sections(request, content)
        except PartialFailure:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PartialFailure(
                f"Failed to write site document: {exc}",
                context={"request_id": request.id, "session_id": request.session_id},
            ) from exc
        except Exception as exc:
            # Any other error still leaves the request completed and the merge retryable.
            self.session.rollback()
            raise PartialFailure(
                f"Unexpected merge error: {exc!r}",
                context={"request_id": request.id, "session_id": request.session_id},
            ) from exc

        logger.info(
            "content_merge.applied",
            extra={
                "request_id": request.id,
                "session_id": request.session_id,
                "request_type": request.request_type.value,
                "applied": result.applied,
                "skipped": result.skipped,
            },
        )
        return result

    def _merge_sections(self, request: SiteRequest, content: dict[str, Any]) -> MergeResult:
        result = MergeResult(session_id=request.session_id)
        staged: dict[str, Any] = {}

        for name in DOCUMENT_SECTIONS:
            if name not in content or name == "images":
                continue
            incoming = content[name]
            try:
                value = self._section_value(name, incoming)
            except PydanticValidationError as exc:
                logger.warning(
                    "content_merge.section_invalid",
                    extra={
                        "request_id": request.id,
                        "session_id": request.session_id,
                        "section": name,
                        "errors": exc.errors(include_url=False),
                    },
                )
                result.skipped.append(name)
                continue
            if value is None:
                continue
            staged[name] = value

        if "blog" in staged:
            current = self.sessions_repo.get_section(session_id=request.session_id, section="blog")
            if current is not None and isinstance(current.data, dict):
                staged["blog"] = {**current.data, **staged["blog"]}

        if staged:
            self._write_sections(request.session_id, staged)
            result.applied.extend(staged.keys())

        images = content.get("images")
        if isinstance(images, dict) and images:
            self._merge_images(request, images, result)
        return result

    def _section_value(self, name: str, incoming: Any) -> Any:
        """Validated section data to write, or None when the incoming value must not replace."""
        if _is_empty(incoming):
            return None
        if name in OBJECT_SECTION_MODELS:
            value = _dump(OBJECT_SECTION_MODELS[name].model_validate(incoming))
            return value or None
        if name in LIST_SECTION_MODELS:
            items = TypeAdapter(list[LIST_SECTION_MODELS[name]]).validate_python(incoming)
            return [_dump(item) for item in items]
        if name == "blog":
            blog = BlogSection.model_validate(incoming)
            if not blog.articles:
                return None
            return _dump(blog)
        return None

    def _write_sections(self, session_id: str, sections: dict[str, Any]) -> None:
        for attempt in range(2):
            try:
                for name, value in sections.items():
                    self.sessions_repo.stage_section(session_id=session_id, section=name, data=value)
                self.session.commit()
                return
            except IntegrityError:
                # Another writer created one of the section rows first.
                self.session.rollback()
                if attempt:
                    raise

    def _merge_images(self, request: SiteRequest, entries: dict[str, Any], result: MergeResult) -> None:
        scope = StorageScope.for_session(request.session_id)
        slots: dict[str, str] = {}

        # Storage writes happen before the section row is locked.
        for role, entry in entries.items():
            reference = self._resolve_image(request, scope, str(role), entry)
            if reference is None:
                result.skipped.append(f"images.{role}")
                continue
            slots[str(role)] = reference

        if not slots:
            return

        for attempt in range(2):
            try:
                row = self.sessions_repo.get_section(
                    session_id=request.session_id, section="images", for_update=True
                )
                if row is None:
                    row = SiteSessionSection(session_id=request.session_id, section="images", data=slots)
                    self.session.add(row)
                else:
                    current = row.data if isinstance(row.data, dict) else {}
                    row.data = {**current, **slots}
                    row.updated_at = utcnow()
                self.session.commit()
                break
            except IntegrityError:
                self.session.rollback()
                if attempt:
                    raise

        result.applied.append("images")
        result.image_roles.extend(sorted(slots))

    def _resolve_image(
        self, request: SiteRequest, scope: StorageScope, role: str, entry: Any
    ) -> Optional[str]:
        """Public reference for one image entry, storing inline data first. None skips the role."""
        if not isinstance(entry, dict):
            logger.warning(
                "content_merge.image_skipped",
                extra={"request_id": request.id, "role": role, "reason": "entry is not an object"},
            )
            return None

        filename = entry.get("filename")
        if not isinstance(filename, str) or not filename.strip():
            filename = None
        data = entry.get("data") or entry.get("url")
        if not isinstance(data, str) or not data.strip():
            logger.warning(
                "content_merge.image_skipped",
                extra={"request_id": request.id, "role": role, "reason": "missing data"},
            )
            return None

        if self.storage.is_reference(data):
            return data

        try:
            stored = self.storage.save(
                data,
                scope=scope,
                filename=filename or role,
                role=role,
                default_content_type=_DEFAULT_INLINE_CONTENT_TYPE,
            )
        except ValidationError as exc:
            logger.warning(
                "content_merge.image_skipped",
                extra={"request_id": request.id, "role": role, "reason": exc.message},
            )
            return None
        except StorageFailure as exc:
            raise PartialFailure(
                f"Failed to store image '{role}': {exc.message}",
                context={"request_id": request.id, "session_id": request.session_id, "role": role},
            ) from exc
        return stored.url
