from inbox_ledger.core.exceptions import NotConnected, SourceUnavailable
from inbox_ledger.services.sync_service import SyncOrchestrator
from inbox_ledger.worker_app import celery_app
import logging

logger = logging.getLogger("gmail_sync")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
handler.setFormatter(formatter)
logger.addHandler(handler)


def run_sync(principal_id: str, max_results: int = None, orchestrator: SyncOrchestrator = None) -> dict:
    orchestrator = orchestrator or SyncOrchestrator()
    report = orchestrator.sync(principal_id, max_results=max_results)

    for err in report.errors:
        logger.warning(f"[{principal_id}] Message {err.message_id} left for retry: {err.reason}")
    logger.info(
        f"[{principal_id}] {len(report.new_transactions)} new transaction(s), "
        f"{report.skipped_already_processed} already processed, {report.unparseable} unparseable."
    )
    return report.model_dump(mode="json")


@celery_app.task(bind=True, max_retries=3, name="inbox_ledger.tasks.gmail_sync.sync_principal")
def sync_principal(self, principal_id: str, max_results: int = None):
    try:
        return run_sync(principal_id, max_results)
    except NotConnected as exc:
        # Needs a fresh authorization, retrying will not help
        logger.error(f"[{principal_id}] {exc}")
        return None
    except SourceUnavailable as exc:
        logger.error(f"[{principal_id}] Gmail unavailable: {exc}")
        raise self.retry(exc=exc, countdown=60)
