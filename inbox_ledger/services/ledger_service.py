import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from inbox_ledger.core.constants import RecordOutcome
from inbox_ledger.core.database import SessionLocal
from inbox_ledger.models.processed_message import PRINCIPAL_MESSAGE_KEY, ProcessedMessage
from inbox_ledger.schemas.sync import ParsedAmount

logger = logging.getLogger(__name__)


def _is_duplicate(err: IntegrityError) -> bool:
    """True only for a violation of the (principal_id, message_id) key."""
    message = str(err.orig)
    if PRINCIPAL_MESSAGE_KEY in message:
        return True
    # SQLite reports the columns rather than the constraint name
    return "UNIQUE constraint failed" in message and "message_id" in message


class ProcessedMessageStore:
    """
    Sole owner of ``ProcessedMessage`` rows.

    Every operation opens its own session so the store can be shared by the
    orchestrator's worker threads. Whether a message is new is decided by
    the unique (principal_id, message_id) constraint, not by a prior read.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def is_processed(self, principal_id: str, message_id: str) -> bool:
        db = self.session_factory()
        try:
            row = (
                db.query(ProcessedMessage.id)
                .filter(
                    ProcessedMessage.principal_id == principal_id,
                    ProcessedMessage.message_id == message_id,
                )
                .first()
            )
            return row is not None
        finally:
            db.close()

    def record(
        self,
        principal_id: str,
        message_id: str,
        email_date: datetime,
        parsed: Optional[ParsedAmount] = None,
    ) -> RecordOutcome:
        row = ProcessedMessage(
            principal_id=principal_id,
            message_id=message_id,
            email_date=email_date,
            currency=parsed.currency.value if parsed else None,
            amount=parsed.amount if parsed else None,
        )
        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
            return RecordOutcome.RECORDED
        except IntegrityError as exc:
            db.rollback()
            if not _is_duplicate(exc):
                raise
            logger.info(f"[{principal_id}] Message {message_id} already recorded. Skipping.")
            return RecordOutcome.ALREADY_RECORDED
        finally:
            db.close()

    def list_processed(self, principal_id: str, unparseable_only: bool = False) -> List[ProcessedMessage]:
        db = self.session_factory()
        try:
            q = db.query(ProcessedMessage).filter(ProcessedMessage.principal_id == principal_id)
            if unparseable_only:
                q = q.filter(ProcessedMessage.amount.is_(None))
            return q.order_by(ProcessedMessage.email_date.desc(), ProcessedMessage.id.desc()).all()
        finally:
            db.close()

    def link_record(self, principal_id: str, message_id: str, linked_record_id: str) -> Optional[ProcessedMessage]:
        """Attach the downstream record created from a message."""
        db = self.session_factory()
        try:
            row = (
                db.query(ProcessedMessage)
                .filter(
                    ProcessedMessage.principal_id == principal_id,
                    ProcessedMessage.message_id == message_id,
                )
                .first()
            )
            if row is None:
                return None
            row.linked_record_id = linked_record_id
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()
