from collections.abc import Iterator

from sqlalchemy.orm import Session

from app.db.base import SessionLocal


def get_session() -> Iterator[Session]:
    """Request-scoped session. A handler that raises leaves no transaction open."""
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
