# chapter_portal/backends/credentials.py
# Service-account credentials shared by the spreadsheet and blob backends

import json
import logging
import os

from google.oauth2 import service_account

from chapter_portal.config import Settings
from chapter_portal.middleware.error_handler import BackingServiceError

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
STORAGE_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_write"]


def load_service_account(settings: Settings, scopes: list[str]) -> service_account.Credentials:
    """Inline JSON wins over the key file path."""
    try:
        if settings.GOOGLE_SERVICE_ACCOUNT_JSON:
            info = json.loads(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
            return service_account.Credentials.from_service_account_info(info, scopes=scopes)

        path = settings.GOOGLE_APPLICATION_CREDENTIALS
        if not os.path.exists(path):
            raise BackingServiceError(
                "Service account credentials are not configured",
                details={"hint": "set GOOGLE_SERVICE_ACCOUNT_JSON or GOOGLE_APPLICATION_CREDENTIALS"},
            )
        return service_account.Credentials.from_service_account_file(path, scopes=scopes)
    except (ValueError, KeyError) as e:
        logger.error(f"Invalid service account credentials: {e}")
        raise BackingServiceError("Service account credentials are invalid") from e
