from typing import TypeVar

from sqlalchemy.orm import Session

from app.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class Repository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def save(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def remove(self, obj: Base) -> None:
        self.session.delete(obj)
        self.session.commit()
