"""
EntitlementLedger: append-only access to entitlement rows.

insert_if_absent is the only write. The unique source_session_id column is the
arbiter under concurrency: if two writers race on one session, the loser's
IntegrityError is turned into a read of the winner's row.
"""
import logging
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.entitlements.models import EntitlementKind
from app.models.entitlement import Entitlement

logger = logging.getLogger(__name__)


class EntitlementLedger:
    def __init__(self, db: Session):
        self.db = db

    def find_by_source(self, source_session_id: str) -> Entitlement | None:
        return (
            self.db.query(Entitlement)
            .filter(Entitlement.source_session_id == source_session_id)
            .one_or_none()
        )

    def _for_pair(self, user_id: str, product_id: int):
        return self.db.query(Entitlement).filter(
            Entitlement.user_id == user_id, Entitlement.product_id == product_id
        )

    def perpetual_for(self, user_id: str, product_id: int) -> Entitlement | None:
        return (
            self._for_pair(user_id, product_id)
            .filter(Entitlement.kind == EntitlementKind.PERPETUAL.value)
            .order_by(Entitlement.acquired_at)
            .first()
        )

    def latest_for(self, user_id: str, product_id: int) -> Entitlement | None:
        """
        Record that decides access for the pair. A perpetual row is never hidden by
        a later subscription row; otherwise the most recent row wins and older rows are history.
        """
        perpetual = self.perpetual_for(user_id, product_id)
        if perpetual is not None:
            return perpetual
        return (
            self._for_pair(user_id, product_id)
            .order_by(Entitlement.acquired_at.desc(), Entitlement.created_at.desc())
            .first()
        )

    def latest_for_subscription(self, subscription_id: str) -> Entitlement | None:
        return (
            self.db.query(Entitlement)
            .filter(Entitlement.provider_subscription_id == subscription_id)
            .order_by(Entitlement.acquired_at.desc())
            .first()
        )

    def list_for_user(self, user_id: str) -> list[Entitlement]:
        return (
            self.db.query(Entitlement)
            .filter(Entitlement.user_id == user_id)
            .order_by(Entitlement.acquired_at.desc())
            .all()
        )

    def insert_if_absent(
        self,
        row: Entitlement,
        before_commit: Callable[[Entitlement], None] | None = None,
    ) -> tuple[Entitlement, bool]:
        """
        Persist row unless a record with the same source_session_id exists.
        before_commit runs after the row is flushed, inside the same transaction
        (audit rows are written there so they commit or roll back with the record).
        Returns (persisted_row, created).
        """
        existing = self.find_by_source(row.source_session_id)
        if existing:
            return existing, False
        try:
            self.db.add(row)
            self.db.flush()
            if before_commit is not None:
                before_commit(row)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("entitlement_duplicate", extra={"session_id": row.source_session_id})
            winner = self.find_by_source(row.source_session_id)
            if winner is None:
                raise
            return winner, False
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return row, True
