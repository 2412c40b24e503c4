from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import (
    RequestChangeTypeEnum,
    RequestPriorityEnum,
    RequestStatusEnum,
    RequestTypeEnum,
)

JSONType = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")
UUIDType = sa.Uuid(as_uuid=False)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class SiteSession(Base):
    """A customer's in-progress site document. Content lives in per-section rows."""

    __tablename__ = "site_sessions"
    __table_args__ = (sa.Index("idx_site_sessions_customer", "customer_id"),)

    id: Mapped[str] = mapped_column(UUIDType, primary_key=True, default=_new_id)
    customer_id: Mapped[str] = mapped_column(Text, nullable=False)
    site_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    business_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    sections: Mapped[list["SiteSessionSection"]] = relationship(
        back_populates="site_session",
        cascade="all, delete-orphan",
        order_by="SiteSessionSection.section",
    )


class SiteSessionSection(Base):
    __tablename__ = "site_session_sections"
    __table_args__ = (UniqueConstraint("session_id", "section", name="uq_site_session_sections_section"),)

    id: Mapped[str] = mapped_column(UUIDType, primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("site_sessions.id", ondelete="CASCADE"), nullable=False
    )
    section: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Any] = mapped_column(JSONType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    site_session: Mapped[SiteSession] = relationship(back_populates="sections")


class SiteRequest(Base):
    __tablename__ = "site_requests"
    __table_args__ = (
        sa.Index("idx_site_requests_customer", "customer_id"),
        sa.Index("idx_site_requests_status", "status"),
        sa.Index("idx_site_requests_type", "request_type"),
        sa.Index("idx_site_requests_admin", "admin_id"),
        sa.Index("idx_site_requests_created", "created_at"),
        sa.Index("idx_site_requests_priority", "priority"),
        sa.Index("idx_site_requests_session", "session_id"),
    )

    id: Mapped[str] = mapped_column(UUIDType, primary_key=True, default=_new_id)
    customer_id: Mapped[str] = mapped_column(Text, nullable=False)
    site_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("site_sessions.id", ondelete="SET NULL"), nullable=True
    )
    request_type: Mapped[RequestTypeEnum] = mapped_column(
        Enum(RequestTypeEnum, name="site_request_type"), nullable=False
    )
    business_type: Mapped[str] = mapped_column(Text, nullable=False)
    terminology: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[RequestStatusEnum] = mapped_column(
        Enum(RequestStatusEnum, name="site_request_status"),
        nullable=False,
        default=RequestStatusEnum.pending,
    )
    priority: Mapped[RequestPriorityEnum] = mapped_column(
        Enum(RequestPriorityEnum, name="site_request_priority"),
        nullable=False,
        default=RequestPriorityEnum.normal,
    )
    admin_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    generated_content: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    images_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    processing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estimated_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 4), nullable=False, default=Decimal("0"), server_default="0"
    )
    actual_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4), nullable=True)
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    customer_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    image_drafts: Mapped[list["SiteRequestImageDraft"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="SiteRequestImageDraft.role",
    )

    @property
    def images_draft(self) -> dict[str, dict[str, Any]]:
        return {draft.role: draft.as_slot() for draft in self.image_drafts}


class SiteRequestImageDraft(Base):
    """One uploaded-but-unfinalized image for a request, keyed by role."""

    __tablename__ = "site_request_image_drafts"
    __table_args__ = (UniqueConstraint("request_id", "role", name="uq_site_request_image_drafts_role"),)

    id: Mapped[str] = mapped_column(UUIDType, primary_key=True, default=_new_id)
    request_id: Mapped[str] = mapped_column(
        ForeignKey("site_requests.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    request: Mapped[SiteRequest] = relationship(back_populates="image_drafts")

    def as_slot(self) -> dict[str, Any]:
        return {"url": self.url, "filename": self.filename, "updatedAt": self.updated_at}


class SiteRequestHistory(Base):
    __tablename__ = "site_request_history"
    __table_args__ = (
        sa.Index("idx_site_request_history_request", "request_id", "created_at"),
        sa.Index("idx_site_request_history_change", "change_type", "created_at"),
    )

    id: Mapped[str] = mapped_column(UUIDType, primary_key=True, default=_new_id)
    request_id: Mapped[str] = mapped_column(
        ForeignKey("site_requests.id", ondelete="CASCADE"), nullable=False
    )
    change_type: Mapped[RequestChangeTypeEnum] = mapped_column(
        Enum(RequestChangeTypeEnum, name="site_request_change_type"), nullable=False
    )
    previous_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
