from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import RequestChangeTypeEnum, RequestStatusEnum
from app.db.models import SiteRequestHistory
from app.db.repositories.base import Repository


def build_history_entry(
    *,
    request_id: str,
    change_type: RequestChangeTypeEnum,
    changed_by: Optional[str] = None,
    previous_status: Optional[RequestStatusEnum] = None,
    new_status: Optional[RequestStatusEnum] = None,
    details: Optional[dict[str, Any]] = None,
) -> SiteRequestHistory:
    return SiteRequestHistory(
        request_id=request_id,
        change_type=change_type,
        changed_by=changed_by,
        previous_status=previous_status.value if previous_status else None,
        new_status=new_status.value if new_status else None,
        details=details or {},
    )


class RequestHistoryRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def list_for_request(self, request_id: str) -> list[SiteRequestHistory]:
        stmt = (
            select(SiteRequestHistory)
            .where(SiteRequestHistory.request_id == request_id)
            .order_by(SiteRequestHistory.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def record(self, **fields: Any) -> SiteRequestHistory:
        return self.save(build_history_entry(**fields))
