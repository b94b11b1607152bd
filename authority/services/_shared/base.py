# authority/services/_shared/base.py
from __future__ import annotations

from datetime import UTC, datetime

from authority.uow.sqlalchemy_uow import SQLAlchemyUnitOfWork


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Provide the Unit of Work factory for the user aggregate.
    * Keep services thin, orchestration-only, no transport or ORM leakage.

    Notes
    -----
    Services must never touch the global session directly; always use a
    Unit of Work.
    """

    def rw_uow(self) -> SQLAlchemyUnitOfWork:
        """
        Create a read-write Unit of Work.

        :returns: Read-write UoW instance.
        :rtype: SQLAlchemyUnitOfWork
        """
        return SQLAlchemyUnitOfWork()

    @staticmethod
    def now_utc() -> datetime:
        return datetime.now(UTC)
