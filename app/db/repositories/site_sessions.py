from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import SiteSession, SiteSessionSection, utcnow
from app.db.repositories.base import Repository


class SiteSessionsRepository(Repository):
    """
    Document store for customer site sessions.

    Every write touches individual section rows; there is no whole-document replace, so
    edits to unrelated sections made concurrently by the wizard are never clobbered.
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, session_id: str) -> Optional[SiteSession]:
        stmt = select(SiteSession).where(SiteSession.id == session_id)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        customer_id: str,
        site_name: Optional[str] = None,
        business_type: Optional[str] = None,
        sections: Optional[dict[str, Any]] = None,
    ) -> SiteSession:
        site_session = SiteSession(customer_id=customer_id, site_name=site_name, business_type=business_type)
        for name, data in (sections or {}).items():
            site_session.sections.append(SiteSessionSection(section=name, data=data))
        return self.save(site_session)

    def delete(self, session_id: str) -> bool:
        site_session = self.get(session_id)
        if not site_session:
            return False
        self.remove(site_session)
        return True

    def get_document(self, session_id: str) -> dict[str, Any]:
        stmt = select(SiteSessionSection).where(SiteSessionSection.session_id == session_id)
        return {row.section: row.data for row in self.session.scalars(stmt).all()}

    def get_section(
        self, *, session_id: str, section: str, for_update: bool = False
    ) -> Optional[SiteSessionSection]:
        stmt = select(SiteSessionSection).where(
            SiteSessionSection.session_id == session_id,
            SiteSessionSection.section == section,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).first()

    def stage_section(self, *, session_id: str, section: str, data: Any) -> SiteSessionSection:
        """Write one section without committing; callers group several writes in one commit."""
        row = self.get_section(session_id=session_id, section=section)
        if row is None:
            row = SiteSessionSection(session_id=session_id, section=section, data=data)
            self.session.add(row)
        else:
            row.data = data
            row.updated_at = utcnow()
        self.session.flush()
        return row

    def write_section(self, *, session_id: str, section: str, data: Any) -> SiteSessionSection:
        try:
            row = self.stage_section(session_id=session_id, section=section, data=data)
        except IntegrityError:
            self.session.rollback()
            row = self.stage_section(session_id=session_id, section=section, data=data)
        self.session.commit()
        self.session.refresh(row)
        return row
