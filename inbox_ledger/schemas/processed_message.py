from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from inbox_ledger.core.constants import Currency


class ProcessedMessageResponse(BaseModel):
    """Schema returned in API responses"""
    principal_id: str
    message_id: str
    processed_at: Optional[datetime] = None
    email_date: datetime
    currency: Optional[Currency] = None
    amount: Optional[Decimal] = None
    linked_record_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ProcessedMessageListResponse(BaseModel):
    messages: list[ProcessedMessageResponse]
    total: int


class LinkRecordRequest(BaseModel):
    """Back-reference to the downstream record created from a message"""
    linked_record_id: str = Field(..., min_length=1, max_length=64)
