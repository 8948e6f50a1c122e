from celery import Celery
from datetime import timedelta
from inbox_ledger.core.config import settings
from inbox_ledger.core.database import Base, engine
from inbox_ledger.models.processed_message import ProcessedMessage  # noqa: F401

celery_app = Celery(
    "worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Autodiscover task modules
celery_app.autodiscover_tasks(["inbox_ledger.tasks"])

Base.metadata.create_all(bind=engine)


# --------------------------------------------------------
# One periodic sync per connected Gmail principal
# --------------------------------------------------------
celery_app.conf.beat_schedule = {
    f"sync-{principal}": {
        "task": "inbox_ledger.tasks.gmail_sync.sync_principal",
        "schedule": timedelta(seconds=int(settings.GMAIL_SYNC_INTERVAL)),
        "args": (principal, settings.GMAIL_MAX_RESULTS),
    }
    for principal in settings.GMAIL_PRINCIPALS
}

# Force import so Celery registers tasks
import inbox_ledger.tasks.gmail_sync  # noqa: E402,F401
