from __future__ import annotations

from ..extensions import db
from kasir.time_utils import utcnow


class SoftDeleteMixin:
    """
    Records are flagged rather than removed so sales history keeps its
    references. Reads go through `live()` unless deleted rows are wanted.
    """
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @classmethod
    def live(cls, include_deleted: bool = False):
        query = db.session.query(cls)
        if not include_deleted:
            query = query.filter(cls.is_deleted.is_(False))
        return query

    @classmethod
    def only_deleted(cls):
        return db.session.query(cls).filter(cls.is_deleted.is_(True))

    def soft_delete(self) -> None:
        self.is_deleted = True
        self.deleted_at = utcnow()

    def restore(self) -> None:
        self.is_deleted = False
        self.deleted_at = None
