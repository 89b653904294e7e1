"""Service-account credentials for Google Calendar and Sheets."""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from google.oauth2 import service_account

from calendar_sync.logging_config import get_logger
from calendar_sync.models.settings import Settings

logger = get_logger(__name__)

CALENDAR_SCOPES = ("https://www.googleapis.com/auth/calendar",)
SHEETS_READONLY_SCOPES = ("https://www.googleapis.com/auth/spreadsheets.readonly",)


class CredentialsError(Exception):
    """Raised when the service account key is missing or malformed."""

    pass


def load_service_account_info(settings: Settings) -> Optional[Dict[str, Any]]:
    """Read the service account key from inline JSON or the key file.

    Returns:
        Parsed key, or None when no key is configured

    Raises:
        CredentialsError: If a configured key cannot be parsed
    """
    if settings.service_account_key:
        try:
            return json.loads(settings.service_account_key)
        except json.JSONDecodeError as e:
            raise CredentialsError(f"SERVICE_ACCOUNT_KEY is not valid JSON: {e}")

    path = Path(settings.service_account_key_path)
    if not path.exists():
        logger.warning("service_account_key_missing", path=str(path))
        return None

    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CredentialsError(f"Failed to read service account key {path}: {e}")


def build_credentials(
    info: Dict[str, Any],
    scopes: Sequence[str],
    subject: Optional[str] = None,
) -> service_account.Credentials:
    """Create service account credentials, impersonating ``subject`` when given.

    Impersonation uses domain-wide delegation.
    """
    credentials = service_account.Credentials.from_service_account_info(info, scopes=list(scopes))
    if subject:
        credentials = credentials.with_subject(subject)
    return credentials
