import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httplib2
from google.auth.exceptions import TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from inbox_ledger.core.config import settings
from inbox_ledger.core.constants import (
    GMAIL_LIST_MAX_RESULTS,
    RATE_LIMIT_REASONS,
    RETRYABLE_STATUSES,
)
from inbox_ledger.core.exceptions import (
    DecodeFailure,
    NotConnected,
    SourceError,
    SourceUnavailable,
)
from inbox_ledger.schemas.email_message import MessageDetail, MessageRef

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, TransportError)


def build_service_for_credentials(creds: Credentials):
    return build('gmail', 'v1', credentials=creds, cache_discovery=False)


def _error_reason(err: HttpError) -> Optional[str]:
    try:
        content = err.content.decode('utf-8') if isinstance(err.content, bytes) else err.content
        errors = json.loads(content).get('error', {}).get('errors') or []
    except (ValueError, AttributeError):
        return None
    return errors[0].get('reason') if errors else None


def is_transient(err: Exception) -> bool:
    if isinstance(err, HttpError):
        status = err.resp.status
        if status in RETRYABLE_STATUSES:
            return True
        return status == 403 and _error_reason(err) in RATE_LIMIT_REASONS
    return isinstance(err, TRANSPORT_ERRORS)


def _header(payload: dict, name: str) -> Optional[str]:
    headers = payload.get('headers') or []
    return next((h.get('value') for h in headers if (h.get('name') or '').lower() == name), None)


@dataclass
class BackoffState:
    """Retry counters owned by one client instance."""
    max_attempts: int
    initial_delay: float
    retries: int = 0
    exhausted: int = 0
    last_delay: float = 0.0

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay * (2 ** (attempt - 1))


class GmailSourceClient:
    """
    Read-only access to one principal's mailbox.

    The discovery service is built per thread since httplib2 connections
    cannot be shared between threads.
    """

    def __init__(
        self,
        credentials: Credentials,
        principal_id: str = "me",
        service_factory: Callable = build_service_for_credentials,
        max_attempts: int = None,
        initial_delay: float = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.credentials = credentials
        self.principal_id = principal_id
        self.service_factory = service_factory
        self.backoff = BackoffState(
            max_attempts=max_attempts or settings.SOURCE_MAX_ATTEMPTS,
            initial_delay=settings.SOURCE_INITIAL_RETRY_DELAY if initial_delay is None else initial_delay,
        )
        self._sleep = sleep
        self._lock = threading.Lock()
        self._local = threading.local()

    def _service(self):
        svc = getattr(self._local, 'service', None)
        if svc is None:
            svc = self.service_factory(self.credentials)
            self._local.service = svc
        return svc

    def _execute(self, make_request: Callable, what: str):
        attempt = 0
        while True:
            attempt += 1
            try:
                return make_request(self._service()).execute()
            except HttpError as err:
                if err.resp.status == 401:
                    raise NotConnected(self.principal_id, "credential rejected by Gmail") from err
                if not is_transient(err):
                    raise SourceError(f"{what} failed: HTTP {err.resp.status}", status=err.resp.status) from err
                last_err = err
            except TRANSPORT_ERRORS as err:
                last_err = err

            if attempt >= self.backoff.max_attempts:
                with self._lock:
                    self.backoff.exhausted += 1
                logger.error(f"[{self.principal_id}] {what} failed after {attempt} attempts: {last_err}")
                status = last_err.resp.status if isinstance(last_err, HttpError) else None
                raise SourceUnavailable(f"{what} failed after {attempt} attempts", status=status) from last_err

            delay = self.backoff.delay_for(attempt)
            with self._lock:
                self.backoff.retries += 1
                self.backoff.last_delay = delay
            logger.warning(
                f"[{self.principal_id}] {what} attempt {attempt}/{self.backoff.max_attempts} "
                f"failed ({last_err}), retrying in {delay}s"
            )
            self._sleep(delay)

    def search(
        self, query: str, page_token: Optional[str] = None, max_results: int = None
    ) -> Tuple[List[MessageRef], Optional[str]]:
        """One page of message references matching ``query``."""
        params = {
            "userId": "me",
            "q": query,
            "maxResults": min(max_results or settings.GMAIL_PAGE_SIZE, GMAIL_LIST_MAX_RESULTS),
            "includeSpamTrash": settings.GMAIL_INCLUDE_SPAM_TRASH,
        }
        if page_token:
            params["pageToken"] = page_token

        resp = self._execute(lambda svc: svc.users().messages().list(**params), "search")
        refs = [
            MessageRef(id=m['id'], thread_id=m.get('threadId'))
            for m in resp.get('messages', [])
        ]
        return refs, resp.get('nextPageToken')

    def fetch_detail(self, message_id: str) -> MessageDetail:
        msg = self._execute(
            lambda svc: svc.users().messages().get(userId='me', id=message_id, format='full'),
            f"fetch {message_id}",
        )

        payload = msg.get('payload')
        if not isinstance(payload, dict):
            raise DecodeFailure(message_id, "detail response has no payload")

        try:
            # milliseconds -> whole seconds
            seconds = int(msg['internalDate']) // 1000
        except (KeyError, TypeError, ValueError):
            raise DecodeFailure(message_id, f"invalid internalDate {msg.get('internalDate')!r}")

        return MessageDetail(
            id=msg.get('id') or message_id,
            payload=payload,
            internal_timestamp=datetime.fromtimestamp(seconds, tz=timezone.utc),
            snippet=msg.get('snippet') or '',
            subject=_header(payload, 'subject'),
            sender=_header(payload, 'from'),
        )
