from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional

from inbox_ledger.core.constants import Currency, MAX_AMOUNT


class ParsedAmount(BaseModel):
    amount: Decimal = Field(..., ge=0, le=MAX_AMOUNT, decimal_places=2)
    currency: Currency


class ExtractedTransaction(BaseModel):
    """In-flight result of one converted message; never persisted here"""
    message_id: str
    email_date: datetime
    amount: Decimal
    currency: Currency
    snippet: Optional[str] = None


class SyncError(BaseModel):
    message_id: str
    reason: str


class SyncReport(BaseModel):
    principal_id: str
    new_transactions: List[ExtractedTransaction] = Field(default_factory=list)
    skipped_already_processed: int = 0
    unparseable: int = 0
    errors: List[SyncError] = Field(default_factory=list)
    cancelled: bool = False
