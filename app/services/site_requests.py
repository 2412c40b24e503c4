from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.db.enums import (
    RequestChangeTypeEnum,
    RequestPriorityEnum,
    RequestStatusEnum,
    RequestTypeEnum,
)
from app.db.models import SiteRequest, SiteRequestHistory, utcnow
from app.db.repositories.request_history import RequestHistoryRepository, build_history_entry
from app.db.repositories.site_requests import SiteRequestsRepository
from app.db.repositories.site_sessions import SiteSessionsRepository
from app.domain.request_lifecycle import COMPLETED, get_transition, keeps_owner
from app.services.content_merge import ContentMerger, MergeResult
from app.services.errors import InvalidTransition, NotFound, PartialFailure, ValidationError
from app.services.media_storage import MediaStorage, get_media_storage

logger = logging.getLogger(__name__)

# Fields an administrator may patch directly. Status and ownership only move through transitions.
_PATCH_CHANGE_TYPES: dict[str, RequestChangeTypeEnum] = {
    "priority": RequestChangeTypeEnum.priority_change,
    "processing_notes": RequestChangeTypeEnum.notes_update,
    "admin_comments": RequestChangeTypeEnum.notes_update,
    "estimated_cost": RequestChangeTypeEnum.cost_update,
    "actual_cost": RequestChangeTypeEnum.cost_update,
    "terminology": RequestChangeTypeEnum.content_update,
    "customer_rating": RequestChangeTypeEnum.content_update,
    "customer_feedback": RequestChangeTypeEnum.content_update,
    "expires_at": RequestChangeTypeEnum.content_update,
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything is stored in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, RequestPriorityEnum):
        return value.value
    return value


@dataclass(frozen=True)
class QueueFilters:
    status: Optional[RequestStatusEnum] = None
    request_type: Optional[RequestTypeEnum] = None
    admin_id: Optional[str] = None
    business_type: Optional[str] = None
    priority: Optional[RequestPriorityEnum] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


@dataclass(frozen=True)
class QueuePage:
    items: list[SiteRequest]
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass(frozen=True)
class QueueStats:
    total: int
    counts: dict[str, int]
    average_processing_time: int
    total_revenue: Decimal


@dataclass
class CompletionResult:
    request: SiteRequest
    merge: Optional[MergeResult] = None
    merge_error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class SiteRequestService:
    """Owns the request lifecycle: creation, queue reads, guarded transitions and patches."""

    def __init__(self, session: Session, storage: Optional[MediaStorage] = None) -> None:
        self.session = session
        self._storage = storage
        self.requests_repo = SiteRequestsRepository(session)
        self.history_repo = RequestHistoryRepository(session)
        self.sessions_repo = SiteSessionsRepository(session)

    @property
    def storage(self) -> MediaStorage:
        if self._storage is None:
            self._storage = get_media_storage()
        return self._storage

    # Reads

    def get_request(self, request_id: str) -> SiteRequest:
        request = self.requests_repo.get(request_id)
        if not request:
            raise NotFound("Request not found", context={"request_id": request_id})
        return request

    def get_queue(self, filters: Optional[QueueFilters] = None, *, page: int = 1, limit: Optional[int] = None) -> QueuePage:
        filters = filters or QueueFilters()
        limit = settings.QUEUE_DEFAULT_PAGE_SIZE if limit is None else limit
        limit = max(1, min(int(limit), settings.QUEUE_MAX_PAGE_SIZE))
        page = max(1, int(page))

        items, total = self.requests_repo.list(
            status=filters.status,
            request_type=filters.request_type,
            admin_id=filters.admin_id,
            business_type=filters.business_type,
            priority=filters.priority,
            created_from=as_utc(filters.created_from),
            created_to=as_utc(filters.created_to),
            offset=(page - 1) * limit,
            limit=limit,
        )
        return QueuePage(
            items=items,
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def get_stats(self) -> QueueStats:
        by_status = self.requests_repo.count_by_status()
        counts = {status.value: int(by_status.get(status, 0)) for status in RequestStatusEnum}
        avg_duration, revenue = self.requests_repo.completed_metrics()
        average = 0
        if avg_duration is not None:
            average = int(Decimal(str(avg_duration)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return QueueStats(
            total=sum(counts.values()),
            counts=counts,
            average_processing_time=average,
            total_revenue=revenue,
        )

    def get_overdue(self, *, now: Optional[datetime] = None) -> list[SiteRequest]:
        now = as_utc(now) or utcnow()
        cutoff = now - timedelta(hours=settings.OVERDUE_AFTER_HOURS)
        return self.requests_repo.list_pending_before(cutoff)

    def get_by_admin(self, admin_id: str) -> list[SiteRequest]:
        return self.requests_repo.list_by_admin(admin_id)

    def get_by_session(self, session_id: str) -> list[SiteRequest]:
        return self.requests_repo.list_by_session(session_id)

    def get_by_site(self, site_id: str) -> list[SiteRequest]:
        return self.requests_repo.list_by_site(site_id)

    def get_history(self, request_id: str) -> list[SiteRequestHistory]:
        self.get_request(request_id)
        return self.history_repo.list_for_request(request_id)

    # Creation and patches

    def create_request(
        self,
        *,
        customer_id: str,
        request_type: RequestTypeEnum,
        business_type: str,
        site_id: Optional[str] = None,
        session_id: Optional[str] = None,
        terminology: Optional[str] = None,
        priority: Optional[RequestPriorityEnum] = None,
        request_data: Optional[dict[str, Any]] = None,
        estimated_cost: Optional[Decimal] = None,
        expires_at: Optional[datetime] = None,
    ) -> SiteRequest:
        if not (customer_id or "").strip():
            raise ValidationError("customerId is required")
        if not (business_type or "").strip():
            raise ValidationError("businessType is required")
        if session_id and self.sessions_repo.get(session_id) is None:
            raise NotFound("Site session not found", context={"session_id": session_id})

        request = self.requests_repo.create(
            customer_id=customer_id,
            request_type=request_type,
            business_type=business_type,
            site_id=site_id,
            session_id=session_id,
            terminology=terminology,
            priority=priority or RequestPriorityEnum.normal,
            request_data=request_data or {},
            estimated_cost=estimated_cost if estimated_cost is not None else Decimal("0"),
            expires_at=as_utc(expires_at),
        )
        logger.info(
            "site_requests.created",
            extra={
                "request_id": request.id,
                "customer_id": customer_id,
                "request_type": request_type.value,
                "session_id": session_id,
            },
        )
        return request

    def update_request(self, request_id: str, patch: dict[str, Any], *, actor: Optional[str] = None) -> SiteRequest:
        unknown = sorted(set(patch) - set(_PATCH_CHANGE_TYPES))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        request = self.get_request(request_id)
        changes: dict[str, Any] = {}
        grouped: dict[RequestChangeTypeEnum, dict[str, Any]] = {}
        for name, value in patch.items():
            if name == "expires_at":
                value = as_utc(value)
            current = getattr(request, name)
            if name == "expires_at":
                current = as_utc(current)
            if current == value:
                continue
            changes[name] = value
            grouped.setdefault(_PATCH_CHANGE_TYPES[name], {})[name] = {
                "from": _json_value(current),
                "to": _json_value(value),
            }

        if not changes:
            return request

        history = [
            build_history_entry(
                request_id=request.id,
                change_type=change_type,
                changed_by=actor,
                details=details,
            )
            for change_type, details in grouped.items()
        ]
        updated = self.requests_repo.update(request.id, history=history, **changes)
        if updated is None:
            raise NotFound("Request not found", context={"request_id": request_id})
        logger.info(
            "site_requests.updated",
            extra={"request_id": request_id, "fields": sorted(changes), "actor": actor},
        )
        return updated

    # Transitions

    def _transition(
        self,
        request_id: str,
        action: str,
        *,
        actor: Optional[str],
        values: dict[str, Any],
        details: Optional[dict[str, Any]] = None,
        change_type: RequestChangeTypeEnum = RequestChangeTypeEnum.status_change,
    ) -> SiteRequest:
        transition = get_transition(action)
        current = self.get_request(request_id)
        previous = current.status
        context = {"request_id": request_id, "status": previous.value, "action": action}

        if previous not in transition.sources:
            raise InvalidTransition(
                f"Cannot {action} a request in status '{previous.value}'",
                context=context,
            )
        if transition.owner_only and current.admin_id != actor:
            raise InvalidTransition(
                f"Only the assigned admin can {action} this request",
                context={**context, "admin_id": current.admin_id, "actor": actor},
            )

        if not keeps_owner(transition.target):
            values = {**values, "admin_id": None}
        history = build_history_entry(
            request_id=request_id,
            change_type=change_type,
            changed_by=actor,
            previous_status=previous,
            new_status=transition.target,
            details={"action": action, **(details or {})},
        )
        # Conditioned on the status just read so the history row records the real predecessor.
        updated = self.requests_repo.transition(
            request_id,
            sources=[previous],
            values={**values, "status": transition.target},
            admin_id=actor if transition.owner_only else None,
            history=history,
        )
        if updated is None:
            raise InvalidTransition(
                f"Request changed before it could be {transition.target.value}",
                context=context,
            )
        logger.info(
            "site_requests.transitioned",
            extra={
                "request_id": request_id,
                "action": action,
                "from_status": previous.value,
                "to_status": transition.target.value,
                "actor": actor,
            },
        )
        return updated

    def assign(self, request_id: str, *, admin_id: str) -> SiteRequest:
        if not admin_id:
            raise ValidationError("adminId is required")
        return self._transition(
            request_id,
            "assign",
            actor=admin_id,
            values={"admin_id": admin_id, "assigned_at": utcnow()},
            details={"adminId": admin_id},
            change_type=RequestChangeTypeEnum.assignment_change,
        )

    def start(self, request_id: str, *, admin_id: str) -> SiteRequest:
        return self._transition(
            request_id,
            "start",
            actor=admin_id,
            values={"started_at": utcnow()},
        )

    def complete(
        self,
        request_id: str,
        *,
        admin_id: str,
        generated_content: Any,
        processing_notes: Optional[str] = None,
        actual_cost: Optional[Decimal] = None,
    ) -> CompletionResult:
        """
        Finish a request and fold its content into the linked site document.

        The status change commits first. The merge afterwards is best effort: a failure is
        logged and written to history, and the request stays completed.
        """
        if generated_content is None or generated_content == {}:
            raise ValidationError("generatedContent is required")

        current = self.get_request(request_id)
        completed_at = utcnow()
        values: dict[str, Any] = {
            "generated_content": generated_content,
            "completed_at": completed_at,
        }
        started_at = as_utc(current.started_at)
        if started_at is not None:
            values["processing_duration"] = max(0, math.floor((completed_at - started_at).total_seconds()))
        if processing_notes is not None:
            values["processing_notes"] = processing_notes
        if actual_cost is not None:
            values["actual_cost"] = actual_cost

        request = self._transition(request_id, "complete", actor=admin_id, values=values)
        result = CompletionResult(request=request)
        try:
            result.merge = self._apply_content(request, actor=admin_id)
        except PartialFailure as exc:
            result.merge_error = exc.message
            self.session.refresh(request)
        return result

    def reject(self, request_id: str, *, admin_id: str, reason: str) -> SiteRequest:
        if not (reason or "").strip():
            raise ValidationError("reason is required")
        return self._transition(
            request_id,
            "reject",
            actor=admin_id,
            values={"error_message": reason, "completed_at": utcnow()},
            details={"reason": reason},
        )

    def fail(self, request_id: str, *, admin_id: str, error: str) -> SiteRequest:
        if not (error or "").strip():
            raise ValidationError("error is required")
        return self._transition(
            request_id,
            "fail",
            actor=admin_id,
            values={"error_message": error, "retry_count": SiteRequest.retry_count + 1},
            details={"error": error},
        )

    def cancel(self, request_id: str, *, actor: Optional[str] = None) -> SiteRequest:
        return self._transition(request_id, "cancel", actor=actor, values={})

    # Content

    def reapply_content(self, request_id: str, *, actor: Optional[str] = None) -> CompletionResult:
        request = self.get_request(request_id)
        if request.status != COMPLETED:
            raise InvalidTransition(
                "Content can only be applied for completed requests",
                context={"request_id": request_id, "status": request.status.value},
            )
        merge = self._apply_content(request, actor=actor)
        return CompletionResult(request=request, merge=merge)

    def _apply_content(self, request: SiteRequest, *, actor: Optional[str]) -> Optional[MergeResult]:
        request_id = request.id
        session_id = request.session_id
        try:
            merge = ContentMerger(self.session, self.storage).apply(request)
        except PartialFailure as exc:
            logger.exception(
                "site_requests.merge_failed",
                extra={"request_id": request_id, "session_id": session_id, "error": exc.message},
            )
            self.history_repo.record(
                request_id=request_id,
                change_type=RequestChangeTypeEnum.merge_failed,
                changed_by=actor,
                details={"error": exc.message, "sessionId": session_id},
            )
            raise
        if merge is not None:
            self.history_repo.record(
                request_id=request_id,
                change_type=RequestChangeTypeEnum.merge_applied,
                changed_by=actor,
                details=merge.as_details(),
            )
        return merge
