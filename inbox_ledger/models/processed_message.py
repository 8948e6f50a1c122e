from sqlalchemy import (
    Column, Integer, String, Numeric,
    DateTime, func, UniqueConstraint, CheckConstraint
)
from inbox_ledger.core.database import Base

PRINCIPAL_MESSAGE_KEY = "uq_processed_principal_message"


class ProcessedMessage(Base):
    __tablename__ = 'processed_messages'
    __table_args__ = (
        # Serialization point for concurrent syncs of the same principal
        UniqueConstraint('principal_id', 'message_id', name=PRINCIPAL_MESSAGE_KEY),
        CheckConstraint('amount IS NULL OR amount >= 0', name='ck_processed_amount_non_negative'),
        CheckConstraint(
            '(currency IS NULL AND amount IS NULL) OR (currency IS NOT NULL AND amount IS NOT NULL)',
            name='ck_processed_currency_amount_pair',
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    principal_id = Column(String(128), nullable=False, index=True)
    message_id = Column(String(128), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
    email_date = Column(DateTime(timezone=True), nullable=False)

    # Both null means seen but unparseable
    currency = Column(String(3), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)

    linked_record_id = Column(String(64), nullable=True, index=True)

    @property
    def parsed(self) -> bool:
        return self.amount is not None

    def __repr__(self) -> str:
        return f"<ProcessedMessage(principal={self.principal_id}, message={self.message_id})>"
