"""
One operation, one transaction.

Every engine operation runs inside a UnitOfWork. All of its mutations (job
rows, technician links, loans, stock counters, report and request statuses)
commit together or are rolled back together. Side effects that must not be
able to undo the business change (notifications, activity log) are queued
with ``after_commit`` and executed only once the commit went through, each
in its own best-effort transaction.
"""
from typing import Callable, List, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import DomainError, Internal

logger = structlog.get_logger(__name__)


class UnitOfWork:
    def __init__(self, db: Session, label: str = "operation"):
        self.db = db
        self.label = label
        self._after_commit: List[Tuple[Callable, tuple, dict]] = []
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("unit_of_work_commit_failed", operation=self.label, error=str(e))
                raise Internal("Failed to save changes") from e
            self.committed = True
            self._run_after_commit()
            return False

        self.db.rollback()
        if isinstance(exc, DomainError):
            logger.info("unit_of_work_rejected", operation=self.label, code=exc.code, reason=exc.message)
            return False
        if isinstance(exc, SQLAlchemyError):
            logger.error("unit_of_work_failed", operation=self.label, error=str(exc))
            raise Internal("Unexpected persistence failure") from exc
        return False

    def after_commit(self, fn: Callable, *args, **kwargs) -> None:
        self._after_commit.append((fn, args, kwargs))

    def _run_after_commit(self) -> None:
        queued, self._after_commit = self._after_commit, []
        for fn, args, kwargs in queued:
            try:
                fn(self.db, *args, **kwargs)
                self.db.commit()
            except Exception as e:  # side effects are best-effort
                self.db.rollback()
                logger.warning(
                    "side_effect_failed",
                    operation=self.label,
                    side_effect=getattr(fn, "__name__", repr(fn)),
                    error=str(e),
                )
