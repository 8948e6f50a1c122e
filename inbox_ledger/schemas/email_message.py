from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class MessageRef(BaseModel):
    """Lightweight handle returned by a search call"""
    id: str = Field(..., description="Gmail message ID")
    thread_id: Optional[str] = Field(None, description="Gmail thread ID")


class MessageDetail(BaseModel):
    """Full message as returned by a detail fetch"""
    id: str = Field(..., description="Gmail message ID")
    payload: Dict[str, Any] = Field(default_factory=dict, description="MIME part tree")
    internal_timestamp: datetime = Field(..., description="Send time derived from internalDate")
    snippet: str = Field("", description="Provider supplied preview text")
    subject: Optional[str] = Field(None, description="Email subject")
    sender: Optional[str] = Field(None, description="Email sender address")
