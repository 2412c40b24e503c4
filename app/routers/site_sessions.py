from __future__ import annotations

import logging
import re
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, get_current_user
from app.db.deps import get_session
from app.db.models import SiteSession
from app.db.repositories.site_sessions import SiteSessionsRepository
from app.schemas.site_sessions import SiteSectionUpdateRequest, SiteSessionCreateRequest
from app.services.media_storage import MediaStorage, StorageScope, get_media_storage
from app.services.site_requests import as_utc

router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)

_SECTION_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")


def _serialize_session(repo: SiteSessionsRepository, site_session: SiteSession) -> dict[str, Any]:
    return jsonable_encoder(
        {
            "id": site_session.id,
            "customerId": site_session.customer_id,
            "siteName": site_session.site_name,
            "businessType": site_session.business_type,
            "document": repo.get_document(site_session.id),
            "createdAt": as_utc(site_session.created_at),
            "updatedAt": as_utc(site_session.updated_at),
        }
    )


def _get_owned_session(repo: SiteSessionsRepository, session_id: str, auth: AuthContext) -> SiteSession:
    site_session = repo.get(session_id)
    if not site_session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site session not found")
    if not auth.is_admin and site_session.customer_id != auth.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this session")
    return site_session


def _validate_section_name(section: str) -> None:
    if not _SECTION_NAME_RE.match(section):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid section name '{section}'")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_site_session(
    payload: SiteSessionCreateRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    customer_id = payload.customerId or auth.user_id
    if customer_id != auth.user_id and not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot create sessions for another customer",
        )
    for section in payload.sections:
        _validate_section_name(section)
    repo = SiteSessionsRepository(session)
    site_session = repo.create(
        customer_id=customer_id,
        site_name=payload.siteName,
        business_type=payload.businessType,
        sections=payload.sections,
    )
    return _serialize_session(repo, site_session)


@router.get("/{session_id}")
def get_site_session(
    session_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    repo = SiteSessionsRepository(session)
    return _serialize_session(repo, _get_owned_session(repo, session_id, auth))


@router.put("/{session_id}/sections/{section}")
def update_site_session_section(
    session_id: str,
    section: str,
    payload: SiteSectionUpdateRequest,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    _validate_section_name(section)
    repo = SiteSessionsRepository(session)
    _get_owned_session(repo, session_id, auth)
    row = repo.write_section(session_id=session_id, section=section, data=payload.data)
    return jsonable_encoder({"section": row.section, "data": row.data, "updatedAt": as_utc(row.updated_at)})


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_site_session(
    session_id: str,
    auth: AuthContext = Depends(get_current_user),
    session: Session = Depends(get_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> None:
    repo = SiteSessionsRepository(session)
    _get_owned_session(repo, session_id, auth)
    repo.delete(session_id)
    storage.cleanup(StorageScope.for_session(session_id))
    logger.info("site_sessions.deleted", extra={"session_id": session_id, "actor": auth.user_id})
