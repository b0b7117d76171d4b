"""
Grading status store — idempotent per-(student, test) grading records.

Every evaluation attempt upserts the same row; the (student_id, test_id)
unique constraint is the conflict target, so concurrent attempts for the
same pair never produce duplicates.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from autograde.database.db_manager import DatabaseManager
from autograde.database.models import GRADING_STATUSES, GradingStatus, new_id, utcnow
from autograde.utils.logger import get_logger
from autograde.utils.retry_utils import retry_with_backoff

log = get_logger(__name__)

_KEY = ("student_id", "test_id")
_CLEARABLE = ("answer_sheet_id", "score", "feedback", "evaluation_result", "user_feedback")


class GradingStatusStore:
    """Upsert/read access to the ``grading_status`` table."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def upsert(
        self,
        student_id: str,
        test_id: str,
        status: str,
        answer_sheet_id: Optional[str] = None,
        score: Optional[float] = None,
        feedback: Optional[str] = None,
        evaluation_result: Optional[Dict[str, Any]] = None,
        user_feedback: Optional[Dict[str, str]] = None,
        clear: Iterable[str] = (),
    ) -> Dict[str, Any]:
        """
        Insert or update the record for ``(student_id, test_id)``.

        Fields left as ``None`` keep their stored value on update, unless
        they are named in *clear*, which resets them to NULL.

        Returns:
            The stored record as a dict.
        """
        if status not in GRADING_STATUSES:
            raise ValueError(f"Unknown grading status: {status}")

        fields = {
            "status": status,
            "answer_sheet_id": answer_sheet_id,
            "score": score,
            "feedback": feedback,
            "evaluation_result": evaluation_result,
            "user_feedback": user_feedback,
        }
        fields = {k: v for k, v in fields.items() if v is not None}
        for name in clear:
            if name not in _CLEARABLE:
                raise ValueError(f"Cannot clear grading field: {name}")
            fields[name] = None
        fields["updated_at"] = utcnow()

        if self.db.supports_native_upsert:
            values = {"id": new_id(), "student_id": student_id, "test_id": test_id,
                      "created_at": fields["updated_at"], **fields}
            stmt = self.db.upsert_statement(GradingStatus.__table__, values, _KEY, fields.keys())
            with self.db.session() as s:
                s.execute(stmt)
                s.commit()
        else:
            self._upsert_portable(student_id, test_id, fields)

        log.info("Grading status %s / %s → %s", student_id, test_id, status)
        return self.fetch(student_id, test_id)

    def _upsert_portable(self, student_id: str, test_id: str, fields: Dict[str, Any]) -> None:
        with self.db.session() as s:
            row = s.execute(
                select(GradingStatus).filter_by(student_id=student_id, test_id=test_id)
            ).scalar_one_or_none()
            if row is None:
                row = GradingStatus(student_id=student_id, test_id=test_id)
                s.add(row)
            for key, value in fields.items():
                setattr(row, key, value)
            s.commit()

    @retry_with_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,))
    def fetch(self, student_id: str, test_id: str) -> Optional[Dict[str, Any]]:
        """Return the record for one student on one test, if any."""
        with self.db.session() as s:
            row = s.execute(
                select(GradingStatus).filter_by(student_id=student_id, test_id=test_id)
            ).scalar_one_or_none()
            return _to_dict(row) if row is not None else None

    @retry_with_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,))
    def fetch_by_test(self, test_id: str) -> List[Dict[str, Any]]:
        """Return all grading records for *test_id*, ordered by student."""
        with self.db.session() as s:
            rows = s.execute(
                select(GradingStatus)
                .filter_by(test_id=test_id)
                .order_by(GradingStatus.student_id)
            ).scalars().all()
            return [_to_dict(r) for r in rows]


def _to_dict(row: GradingStatus) -> Dict[str, Any]:
    return {
        "id": row.id,
        "student_id": row.student_id,
        "test_id": row.test_id,
        "status": row.status,
        "answer_sheet_id": row.answer_sheet_id,
        "score": row.score,
        "feedback": row.feedback,
        "evaluation_result": row.evaluation_result,
        "user_feedback": row.user_feedback,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
