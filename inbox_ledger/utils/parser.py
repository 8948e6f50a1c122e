import re
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from inbox_ledger.core.constants import Currency, MAX_AMOUNT
from inbox_ledger.schemas.sync import ParsedAmount

# "1,000.00", "1000", "25.5"
_NUMERAL = r"(?P<whole>\d{1,3}(?:,\d{3})+|\d+)(?:\.(?P<fraction>\d{1,2}))?"

# Order matters: the first pattern that matches anywhere in the text wins.
NOTATION_PATTERNS = [
    # CDN$ 100.00 / CD$100 / CAD 100 / CAD$ 100
    (Currency.CAD, re.compile(r"\b(?:CDN\$|CD\$|CAD\$?)\s*\$?\s*" + _NUMERAL, re.IGNORECASE)),
    # USD 50 / USD $50.00 / US$50 / USD$50
    (Currency.USD, re.compile(r"\b(?:USD\$?|US\$)\s*\$?\s*" + _NUMERAL, re.IGNORECASE)),
    # bare $25.00 defaults to USD
    (Currency.USD, re.compile(r"\$\s*" + _NUMERAL)),
]

TWO_PLACES = Decimal("0.01")


def _to_amount(match: re.Match) -> Decimal:
    whole = match.group("whole").replace(",", "")
    fraction = match.group("fraction") or "0"
    return Decimal(f"{whole}.{fraction}").quantize(TWO_PLACES, rounding=ROUND_DOWN)


def parse_transaction_email(body: str) -> Optional[ParsedAmount]:
    """
    Extract the first monetary mention from an email body.

    Returns None when no notation pattern applies; the caller decides how to
    account for an unparseable message.
    """
    if not body:
        return None

    for currency, pattern in NOTATION_PATTERNS:
        m = pattern.search(body)
        if m:
            amount = _to_amount(m)
            if amount > MAX_AMOUNT:
                # too large for the ledger column: no match
                return None
            return ParsedAmount(amount=amount, currency=currency)

    return None
