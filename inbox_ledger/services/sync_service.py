import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from inbox_ledger.core.config import settings
from inbox_ledger.core.constants import RecordOutcome
from inbox_ledger.core.exceptions import DecodeFailure, NotConnected, SourceError, SourceUnavailable
from inbox_ledger.schemas.email_message import MessageRef
from inbox_ledger.schemas.sync import ExtractedTransaction, SyncError, SyncReport
from inbox_ledger.services.credential_provider import TokenFileCredentialProvider
from inbox_ledger.services.gmail_service import GmailSourceClient
from inbox_ledger.services.ledger_service import ProcessedMessageStore
from inbox_ledger.utils.email_body import extract_text
from inbox_ledger.utils.parser import parse_transaction_email

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    NEW = 'new'
    UNPARSEABLE = 'unparseable'
    ALREADY_RECORDED = 'already_recorded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class MessageOutcome(NamedTuple):
    status: MessageStatus
    transaction: Optional[ExtractedTransaction] = None
    error: Optional[SyncError] = None


class SyncOrchestrator:
    """
    search -> filter processed -> fetch -> extract -> parse -> record.

    Per-message failures end up in the report; only NotConnected and
    SourceUnavailable abort a run.
    """

    def __init__(
        self,
        credential_provider=None,
        store: ProcessedMessageStore = None,
        client_factory: Callable = None,
        query: str = None,
        max_workers: int = None,
    ):
        self.credential_provider = credential_provider or TokenFileCredentialProvider()
        self.store = store or ProcessedMessageStore()
        self.client_factory = client_factory or GmailSourceClient
        self.query = query or settings.gmail_query
        self.max_workers = max_workers or settings.SYNC_MAX_WORKERS

    def sync(
        self,
        principal_id: str,
        max_results: int = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncReport:
        if max_results is None:
            max_results = settings.GMAIL_MAX_RESULTS
        if cancel_event is None:
            cancel_event = threading.Event()

        # NotConnected propagates: no partial report
        creds = self.credential_provider.get_valid_credential(principal_id)
        client = self.client_factory(creds, principal_id=principal_id)

        report = SyncReport(principal_id=principal_id)

        refs = self._collect_refs(client, principal_id, max_results, cancel_event)
        logger.info(f"[{principal_id}] Considering {len(refs)} message(s).")

        pending = []
        for ref in refs:
            if self.store.is_processed(principal_id, ref.id):
                report.skipped_already_processed += 1
            else:
                pending.append(ref)

        if pending:
            workers = max(1, min(self.max_workers, len(pending)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(
                    lambda ref: self._process_message(client, principal_id, ref, cancel_event),
                    pending,
                ))
        else:
            outcomes = []

        for outcome in outcomes:
            if outcome.status is MessageStatus.NEW:
                report.new_transactions.append(outcome.transaction)
            elif outcome.status is MessageStatus.UNPARSEABLE:
                report.unparseable += 1
            elif outcome.status is MessageStatus.ALREADY_RECORDED:
                report.skipped_already_processed += 1
            elif outcome.status is MessageStatus.FAILED:
                report.errors.append(outcome.error)

        report.new_transactions.sort(key=lambda tx: (tx.email_date, tx.message_id))
        report.cancelled = cancel_event.is_set()

        logger.info(
            f"[{principal_id}] Sync done: {len(report.new_transactions)} new, "
            f"{report.skipped_already_processed} skipped, {report.unparseable} unparseable, "
            f"{len(report.errors)} error(s){' (cancelled)' if report.cancelled else ''}."
        )
        return report

    def _collect_refs(
        self, client, principal_id: str, max_results: int, cancel_event: threading.Event
    ) -> List[MessageRef]:
        refs: List[MessageRef] = []
        seen = set()
        page_token = None

        while len(refs) < max_results:
            if cancel_event.is_set():
                logger.info(f"[{principal_id}] Cancelled before fetching next page.")
                break
            try:
                page, page_token = client.search(
                    self.query, page_token=page_token, max_results=max_results - len(refs)
                )
            except SourceUnavailable:
                raise
            except SourceError as exc:
                raise SourceUnavailable(f"search failed: {exc}", status=exc.status) from exc

            for ref in page:
                if ref.id in seen:
                    continue
                seen.add(ref.id)
                refs.append(ref)
                if len(refs) >= max_results:
                    break

            logger.info(f"[{principal_id}] Fetched page with {len(page)} reference(s).")
            if not page_token:
                break

        return refs

    def _process_message(
        self, client, principal_id: str, ref: MessageRef, cancel_event: threading.Event
    ) -> MessageOutcome:
        if cancel_event.is_set():
            return MessageOutcome(MessageStatus.CANCELLED)

        # Any failure before record leaves the message unrecorded for the next run
        try:
            detail = client.fetch_detail(ref.id)
        except NotConnected as exc:
            logger.error(f"[{principal_id}] Credential rejected while fetching message {ref.id}: {exc}")
            return self._failed(ref, exc)
        except (SourceError, DecodeFailure) as exc:
            logger.warning(f"[{principal_id}] Failed to fetch message {ref.id}: {exc}")
            return self._failed(ref, exc)
        except Exception as exc:
            logger.error(f"[{principal_id}] Unexpected error fetching message {ref.id}: {exc!r}")
            return self._failed(ref, exc)

        # No cancellation check past this point: a fetched message is always recorded
        text = extract_text(detail)
        parsed = parse_transaction_email(text)

        try:
            outcome = self.store.record(principal_id, ref.id, detail.internal_timestamp, parsed)
        except SQLAlchemyError as exc:
            logger.error(f"[{principal_id}] DB error recording message {ref.id}: {exc}")
            return self._failed(ref, f"could not record: {exc.__class__.__name__}")

        if outcome is RecordOutcome.ALREADY_RECORDED:
            return MessageOutcome(MessageStatus.ALREADY_RECORDED)

        if parsed is None:
            logger.warning(f"[{principal_id}] No amount found in message {ref.id}; marked as seen.")
            return MessageOutcome(MessageStatus.UNPARSEABLE)

        return MessageOutcome(
            MessageStatus.NEW,
            transaction=ExtractedTransaction(
                message_id=ref.id,
                email_date=detail.internal_timestamp,
                amount=parsed.amount,
                currency=parsed.currency,
                snippet=detail.snippet or None,
            ),
        )

    @staticmethod
    def _failed(ref: MessageRef, reason) -> MessageOutcome:
        return MessageOutcome(MessageStatus.FAILED, error=SyncError(message_id=ref.id, reason=str(reason)))
