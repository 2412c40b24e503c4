from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.db.enums import RequestPriorityEnum, RequestStatusEnum, RequestTypeEnum
from app.db.models import SiteRequest, SiteRequestHistory
from app.db.repositories.base import Repository


class SiteRequestsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, request_id: str) -> Optional[SiteRequest]:
        stmt = select(SiteRequest).where(SiteRequest.id == request_id)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        customer_id: str,
        request_type: RequestTypeEnum,
        business_type: str,
        **fields: Any,
    ) -> SiteRequest:
        request = SiteRequest(
            customer_id=customer_id,
            request_type=request_type,
            business_type=business_type,
            status=RequestStatusEnum.pending,
            **fields,
        )
        return self.save(request)

    def list(
        self,
        *,
        status: Optional[RequestStatusEnum] = None,
        request_type: Optional[RequestTypeEnum] = None,
        admin_id: Optional[str] = None,
        business_type: Optional[str] = None,
        priority: Optional[RequestPriorityEnum] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[SiteRequest], int]:
        conditions = []
        if status:
            conditions.append(SiteRequest.status == status)
        if request_type:
            conditions.append(SiteRequest.request_type == request_type)
        if admin_id:
            conditions.append(SiteRequest.admin_id == admin_id)
        if business_type:
            conditions.append(SiteRequest.business_type == business_type)
        if priority:
            conditions.append(SiteRequest.priority == priority)
        if created_from:
            conditions.append(SiteRequest.created_at >= created_from)
        if created_to:
            conditions.append(SiteRequest.created_at <= created_to)

        total = self.session.scalar(select(func.count(SiteRequest.id)).where(*conditions)) or 0
        stmt = (
            select(SiteRequest)
            .where(*conditions)
            .order_by(SiteRequest.created_at.desc(), SiteRequest.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all()), int(total)

    def list_by_admin(self, admin_id: str) -> list[SiteRequest]:
        stmt = select(SiteRequest).where(SiteRequest.admin_id == admin_id).order_by(SiteRequest.created_at.desc())
        return list(self.session.scalars(stmt).all())

    def list_by_session(self, session_id: str) -> list[SiteRequest]:
        stmt = (
            select(SiteRequest)
            .where(SiteRequest.session_id == session_id)
            .order_by(SiteRequest.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_by_site(self, site_id: str) -> list[SiteRequest]:
        stmt = select(SiteRequest).where(SiteRequest.site_id == site_id).order_by(SiteRequest.created_at.desc())
        return list(self.session.scalars(stmt).all())

    def list_pending_before(self, cutoff: datetime) -> list[SiteRequest]:
        stmt = (
            select(SiteRequest)
            .where(SiteRequest.status == RequestStatusEnum.pending, SiteRequest.created_at < cutoff)
            .order_by(SiteRequest.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def count_by_status(self) -> dict[RequestStatusEnum, int]:
        stmt = select(SiteRequest.status, func.count(SiteRequest.id)).group_by(SiteRequest.status)
        return {status: int(count) for status, count in self.session.execute(stmt).all()}

    def completed_metrics(self) -> tuple[Optional[float], Decimal]:
        """Return (average processing duration, summed actual cost) over completed requests."""
        completed = SiteRequest.status == RequestStatusEnum.completed
        avg_duration = self.session.scalar(
            select(func.avg(SiteRequest.processing_duration)).where(
                completed, SiteRequest.processing_duration.is_not(None)
            )
        )
        revenue = self.session.scalar(
            select(func.sum(SiteRequest.actual_cost)).where(completed, SiteRequest.actual_cost.is_not(None))
        )
        return (
            float(avg_duration) if avg_duration is not None else None,
            Decimal(str(revenue)) if revenue is not None else Decimal("0"),
        )

    def transition(
        self,
        request_id: str,
        *,
        sources: Iterable[RequestStatusEnum],
        values: dict[str, Any],
        admin_id: Optional[str] = None,
        history: Optional[SiteRequestHistory] = None,
    ) -> Optional[SiteRequest]:
        """
        Conditionally move a request to a new state in a single UPDATE.

        The row only changes while its status is still one of ``sources`` (and, when given,
        still owned by ``admin_id``). Returns None when no row matched.
        """
        stmt = update(SiteRequest).where(
            SiteRequest.id == request_id,
            SiteRequest.status.in_(list(sources)),
        )
        if admin_id is not None:
            stmt = stmt.where(SiteRequest.admin_id == admin_id)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = self.session.execute(stmt)
        if result.rowcount != 1:
            self.session.rollback()
            return None
        if history is not None:
            self.session.add(history)
        self.session.commit()
        return self.get(request_id)

    def update(
        self,
        request_id: str,
        *,
        history: Iterable[SiteRequestHistory] = (),
        **fields: Any,
    ) -> Optional[SiteRequest]:
        request = self.get(request_id)
        if not request:
            return None
        for key, value in fields.items():
            setattr(request, key, value)
        for entry in history:
            self.session.add(entry)
        self.session.commit()
        self.session.refresh(request)
        return request
