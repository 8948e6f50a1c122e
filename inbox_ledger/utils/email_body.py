import base64
import binascii
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

from inbox_ledger.schemas.email_message import MessageDetail

logger = logging.getLogger(__name__)


def _decode_data(data: str) -> Optional[str]:
    """base64url -> text; Gmail omits the padding"""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError, TypeError):
        return None
    return raw.decode("utf-8", errors="replace")


def _find_part(payload: dict, mime_type: str) -> Optional[dict]:
    """Depth-first search for the first part of the given type carrying data."""
    if not isinstance(payload, dict):
        return None

    body = payload.get("body") or {}
    if (payload.get("mimeType") or "").lower().startswith(mime_type) and body.get("data"):
        return payload

    for part in payload.get("parts") or []:
        found = _find_part(part, mime_type)
        if found is not None:
            return found
    return None


def clean_email_body(html: str) -> str:
    # Parse HTML
    soup = BeautifulSoup(html, "lxml")

    # Get visible text
    text = soup.get_text(separator="\n")

    # Remove duplicate consecutive lines
    deduped = []
    seen = set()
    for line in text.splitlines():
        line_clean = line.strip()
        if line_clean and line_clean not in seen:
            deduped.append(line_clean)
            seen.add(line_clean)

    cleaned = "\n".join(deduped)
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    return cleaned.strip()


def extract_text(detail: MessageDetail) -> str:
    """
    Plain text of a message: the first text/plain part, else the first
    text/html part reduced to visible text. Never raises; an empty string
    means nothing decodable was found.
    """
    payload = detail.payload or {}

    part = _find_part(payload, "text/plain")
    if part is not None:
        text = _decode_data(part["body"]["data"])
        if text is not None:
            return text.strip()

    part = _find_part(payload, "text/html")
    if part is not None:
        html = _decode_data(part["body"]["data"])
        if html is not None:
            try:
                return clean_email_body(html)
            except Exception as exc:
                logger.warning(f"Failed to clean HTML body of {detail.id}: {exc}")
                return ""

    logger.debug(f"No textual part found in message {detail.id}")
    return ""
