from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, get_current_user, require_admin
from app.db.deps import get_session
from app.db.enums import RequestPriorityEnum, RequestStatusEnum, RequestTypeEnum
from app.db.models import SiteRequest, SiteRequestHistory
from app.schemas.site_requests import (
    SiteRequestCompleteRequest,
    SiteRequestCreateRequest,
    SiteRequestFailRequest,
    SiteRequestRejectRequest,
    SiteRequestUpdateRequest,
)
from app.services.media_storage import MediaStorage, get_media_storage
from app.services.site_requests import (
    CompletionResult,
    QueueFilters,
    SiteRequestService,
    as_utc,
)

router = APIRouter(prefix="/requests", tags=["requests"])
logger = logging.getLogger(__name__)


def serialize_request(request: SiteRequest) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "id": request.id,
            "customerId": request.customer_id,
            "siteId": request.site_id,
            "sessionId": request.session_id,
            "requestType": request.request_type,
            "businessType": request.business_type,
            "terminology": request.terminology,
            "status": request.status,
            "priority": request.priority,
            "adminId": request.admin_id,
            "requestData": request.request_data,
            "generatedContent": request.generated_content,
            "imagesDraft": {
                role: {**slot, "updatedAt": as_utc(slot["updatedAt"])}
                for role, slot in request.images_draft.items()
            },
            "imagesVersion": request.images_version,
            "processingNotes": request.processing_notes,
            "adminComments": request.admin_comments,
            "estimatedCost": request.estimated_cost,
            "actualCost": request.actual_cost,
            "revisionCount": request.revision_count,
            "customerRating": request.customer_rating,
            "customerFeedback": request.customer_feedback,
            "processingDuration": request.processing_duration,
            "errorMessage": request.error_message,
            "retryCount": request.retry_count,
            "expiresAt": as_utc(request.expires_at),
            "createdAt": as_utc(request.created_at),
            "assignedAt": as_utc(request.assigned_at),
            "startedAt": as_utc(request.started_at),
            "completedAt": as_utc(request.completed_at),
            "updatedAt": as_utc(request.updated_at),
        }
    )


def _serialize_history(entry: SiteRequestHistory) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "id": entry.id,
            "requestId": entry.request_id,
            "changeType": entry.change_type,
            "previousStatus": entry.previous_status,
            "newStatus": entry.new_status,
            "changedBy": entry.changed_by,
            "details": entry.details,
            "createdAt": as_utc(entry.created_at),
        }
    )


def _serialize_completion(result: CompletionResult) -> dict[str, Any]:
    body = serialize_request(result.request)
    if result.merge_error:
        body["merge"] = {"status": "failed", "error": result.merge_error}
    elif result.merge is None:
        body["merge"] = {"status": "skipped"}
    else:
        body["merge"] = {"status": "applied", **result.merge.as_details()}
    return body


def _ensure_can_view(request: SiteRequest, auth: AuthContext) -> None:
    if auth.is_admin or request.customer_id == auth.user_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this request")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_request(
    payload: SiteRequestCreateRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    customer_id = payload.customerId or auth.user_id
    if customer_id != auth.user_id and not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot create requests for another customer",
        )
    request = SiteRequestService(session).create_request(
        customer_id=customer_id,
        request_type=payload.requestType,
        business_type=payload.businessType,
        site_id=payload.siteId,
        session_id=payload.sessionId,
        terminology=payload.terminology,
        priority=payload.priority,
        request_data=payload.requestData,
        estimated_cost=payload.estimatedCost,
        expires_at=payload.expiresAt,
    )
    return {"id": request.id, "status": request.status.value}


@router.get("")
def get_queue(
    status_filter: Optional[RequestStatusEnum] = Query(default=None, alias="status"),
    requestType: Optional[RequestTypeEnum] = None,
    adminId: Optional[str] = None,
    businessType: Optional[str] = None,
    priority: Optional[RequestPriorityEnum] = None,
    created_from: Optional[datetime] = Query(default=None, alias="from"),
    created_to: Optional[datetime] = Query(default=None, alias="to"),
    page: int = 1,
    limit: Optional[int] = None,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    filters = QueueFilters(
        status=status_filter,
        request_type=requestType,
        admin_id=adminId,
        business_type=businessType,
        priority=priority,
        created_from=created_from,
        created_to=created_to,
    )
    result = SiteRequestService(session).get_queue(filters, page=page, limit=limit)
    return {
        "items": [serialize_request(item) for item in result.items],
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
        "totalPages": result.total_pages,
    }


@router.get("/stats")
def get_stats(
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    stats = SiteRequestService(session).get_stats()
    return jsonable_encoder(
        {
            "total": stats.total,
            **stats.counts,
            "averageProcessingTime": stats.average_processing_time,
            "totalRevenue": stats.total_revenue,
        }
    )


@router.get("/overdue")
def get_overdue(
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    return [serialize_request(item) for item in SiteRequestService(session).get_overdue()]


@router.get("/admin/{admin_id}")
def get_requests_by_admin(
    admin_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    return [serialize_request(item) for item in SiteRequestService(session).get_by_admin(admin_id)]


@router.get("/session/{session_id}")
def get_requests_by_session(
    session_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    items = SiteRequestService(session).get_by_session(session_id)
    if not auth.is_admin:
        items = [item for item in items if item.customer_id == auth.user_id]
    return [serialize_request(item) for item in items]


@router.get("/site/{site_id}")
def get_requests_by_site(
    site_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    items = SiteRequestService(session).get_by_site(site_id)
    if not auth.is_admin:
        items = [item for item in items if item.customer_id == auth.user_id]
    return [serialize_request(item) for item in items]


@router.get("/{request_id}")
def get_request(
    request_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    request = SiteRequestService(session).get_request(request_id)
    _ensure_can_view(request, auth)
    return serialize_request(request)


@router.get("/{request_id}/history")
def get_request_history(
    request_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> list[dict[str, Any]]:
    return [_serialize_history(entry) for entry in SiteRequestService(session).get_history(request_id)]


@router.put("/{request_id}/assign")
def assign_request(
    request_id: str,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    return serialize_request(SiteRequestService(session).assign(request_id, admin_id=auth.user_id))


@router.put("/{request_id}/start")
def start_request(
    request_id: str,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    return serialize_request(SiteRequestService(session).start(request_id, admin_id=auth.user_id))


@router.put("/{request_id}/complete")
def complete_request(
    request_id: str,
    payload: SiteRequestCompleteRequest,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> dict[str, Any]:
    result = SiteRequestService(session, storage).complete(
        request_id,
        admin_id=auth.user_id,
        generated_content=payload.generatedContent,
        processing_notes=payload.processingNotes,
        actual_cost=payload.actualCost,
    )
    return _serialize_completion(result)


@router.put("/{request_id}/reject")
def reject_request(
    request_id: str,
    payload: SiteRequestRejectRequest,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    request = SiteRequestService(session).reject(request_id, admin_id=auth.user_id, reason=payload.reason or "")
    return serialize_request(request)


@router.put("/{request_id}/fail")
def fail_request(
    request_id: str,
    payload: SiteRequestFailRequest,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    request = SiteRequestService(session).fail(request_id, admin_id=auth.user_id, error=payload.error or "")
    return serialize_request(request)


@router.put("/{request_id}")
def update_request(
    request_id: str,
    payload: SiteRequestUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    request = SiteRequestService(session).update_request(request_id, payload.to_patch(), actor=auth.user_id)
    return serialize_request(request)


@router.delete("/{request_id}")
def cancel_request(
    request_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    service = SiteRequestService(session)
    _ensure_can_view(service.get_request(request_id), auth)
    request = service.cancel(request_id, actor=auth.user_id)
    return serialize_request(request)


@router.post("/{request_id}/apply-content")
def apply_content(
    request_id: str,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> dict[str, Any]:
    result = SiteRequestService(session, storage).reapply_content(request_id, actor=auth.user_id)
    return _serialize_completion(result)
