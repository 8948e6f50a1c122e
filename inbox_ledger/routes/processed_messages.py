from fastapi import APIRouter, Depends, HTTPException, status
from inbox_ledger.services.ledger_service import ProcessedMessageStore
from inbox_ledger.schemas.processed_message import (
    LinkRecordRequest,
    ProcessedMessageListResponse,
    ProcessedMessageResponse,
)

processed_router = APIRouter(prefix="/processed-messages", tags=['Processed Messages'])


def get_store() -> ProcessedMessageStore:
    return ProcessedMessageStore()


@processed_router.get("/{principal_id}", response_model=ProcessedMessageListResponse)
def read_processed(principal_id: str, unparseable_only: bool = False, store: ProcessedMessageStore = Depends(get_store)):
    items = store.list_processed(principal_id, unparseable_only=unparseable_only)
    return {'messages': items, 'total': len(items)}


@processed_router.put("/{principal_id}/{message_id}/link", response_model=ProcessedMessageResponse)
def link_processed(
    principal_id: str,
    message_id: str,
    body: LinkRecordRequest,
    store: ProcessedMessageStore = Depends(get_store),
):
    row = store.link_record(principal_id, message_id, body.linked_record_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Processed message not found")
    return row
