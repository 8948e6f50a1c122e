import logging
import os
import tempfile

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from inbox_ledger.core.config import settings
from inbox_ledger.core.constants import GMAIL_SCOPES
from inbox_ledger.core.exceptions import NotConnected

logger = logging.getLogger(__name__)


def _write_token(path: str, content: str) -> None:
    """Replace the token file atomically so concurrent readers never see a partial write."""
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path) or ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class TokenFileCredentialProvider:
    """
    Hands out a valid Gmail credential per principal from authorized-user
    token files (``<token_dir>/<principal>.json``), refreshing and writing
    back an expired token when a refresh token is available.
    """

    def __init__(self, token_dir: str = None):
        self.token_dir = token_dir or settings.GMAIL_TOKEN_DIR

    def token_path(self, principal_id: str) -> str:
        return os.path.join(self.token_dir, f"{principal_id}.json")

    def get_valid_credential(self, principal_id: str) -> Credentials:
        path = self.token_path(principal_id)
        if not os.path.exists(path):
            raise NotConnected(principal_id, f"token file not found: {path}")

        try:
            creds = Credentials.from_authorized_user_file(path, GMAIL_SCOPES)
        except (ValueError, OSError) as exc:
            raise NotConnected(principal_id, f"unreadable token file: {exc}") from exc

        if creds.valid:
            return creds

        if not (creds.expired and creds.refresh_token):
            raise NotConnected(principal_id, "token expired and cannot be refreshed")

        try:
            creds.refresh(Request())
        except (RefreshError, TransportError) as exc:
            raise NotConnected(principal_id, f"token refresh failed: {exc}") from exc

        _write_token(path, creds.to_json())
        logger.info(f"[{principal_id}] Refreshed Gmail token")
        return creds
