from decimal import Decimal
from enum import Enum


class Currency(str, Enum):
    CAD = 'CAD'
    USD = 'USD'


# Result of a ledger write; a duplicate is an outcome, not an exception
class RecordOutcome(str, Enum):
    RECORDED = 'recorded'
    ALREADY_RECORDED = 'already_recorded'


# Largest value processed_messages.amount (Numeric(12, 2)) can hold
MAX_AMOUNT = Decimal("9999999999.99")

# Used for Gmail API access
GMAIL_SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']

GMAIL_LIST_MAX_RESULTS = 500

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
RATE_LIMIT_REASONS = {'rateLimitExceeded', 'userRateLimitExceeded'}
