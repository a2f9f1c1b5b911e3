"""
Google Sheets integration.

Thin async layer over gspread's raw values API. Every call runs in a worker
thread under a timeout and is retried with exponential backoff when the
failure is transient (network errors, timeouts, HTTP 429 and 5xx).
"""

import json
import logging
from typing import Any, Dict, List, Optional

import gspread
import requests
from gspread.exceptions import APIError
from google.oauth2.service_account import Credentials

from config import settings
from ..utils.google_api import (
    GoogleAPITimeoutError,
    execute_with_timeout,
    TIMEOUT_READ,
    TIMEOUT_WRITE,
)
from ..utils.retry import RetryExhausted, with_sheets_retry

logger = logging.getLogger(__name__)


RANGE_PARSE_ERROR = "Unable to parse range"


def api_error_status(error: Exception) -> Optional[int]:
    """HTTP status of a gspread APIError, if one can be found."""
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_range_parse_error(error: Exception) -> bool:
    """True when the API rejected the range, i.e. the tab does not exist."""
    return RANGE_PARSE_ERROR in str(error)


def is_transient_error(error: Exception) -> bool:
    """Whether a failed Sheets call is worth retrying."""
    if isinstance(error, (GoogleAPITimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, requests.exceptions.RequestException):
        return True
    if isinstance(error, APIError):
        if is_range_parse_error(error):
            return False
        status = api_error_status(error)
        return status is not None and (status == 429 or status >= 500)
    return isinstance(error, OSError)


def escape_sheet_name(name: str) -> str:
    """Quote a tab name for A1 notation ("it's" -> "'it''s'")."""
    return "'" + name.replace("'", "''") + "'"


def safe_string(value: Any) -> str:
    """Cell value as a string; None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def split_sheet_values(values: List[List[Any]]) -> Dict[str, Any]:
    """Split raw values into header and data rows, all cells stringified."""
    if not values:
        return {"header": [], "rows": []}
    rows = [[safe_string(cell) for cell in row] for row in values]
    return {"header": rows[0], "rows": rows[1:]}


@with_sheets_retry(retry_if=is_transient_error)
async def call_sheets_api(api_call, timeout: float, operation: str):
    """One gspread call under a timeout, retried while the failure is transient."""
    return await execute_with_timeout(api_call, timeout, operation)


class GoogleSheetsIntegration:
    """
    Google Sheets access for daily reports and tasks.

    Spreadsheets are opened by key once and cached. Ranges are A1 strings
    including the tab, e.g. "'yamamoto'!A:N".
    """

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets",
    ]

    def __init__(self):
        self.client: Optional[gspread.Client] = None
        self._spreadsheets: Dict[str, gspread.Spreadsheet] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _load_credentials(self) -> Optional[Credentials]:
        creds_json = settings.google_credentials_json
        if creds_json:
            creds_data = json.loads(creds_json)
            return Credentials.from_service_account_info(creds_data, scopes=self.SCOPES)

        email = settings.google_service_account_email
        key = settings.google_service_account_key
        if email and key:
            info = {
                "type": "service_account",
                "client_email": email,
                "private_key": key.replace("\\n", "\n"),
                "token_uri": "https://oauth2.googleapis.com/token",
            }
            return Credentials.from_service_account_info(info, scopes=self.SCOPES)

        return None

    async def initialize(self) -> bool:
        """Initialize the gspread client."""
        if self._initialized:
            return True

        try:
            credentials = self._load_credentials()
            if credentials is None:
                logger.error("No Google service account credentials configured")
                return False

            self.client = gspread.authorize(credentials)
            self._initialized = True
            logger.info("Google Sheets client initialized")
            return True

        except (ValueError, KeyError) as e:
            logger.error(f"Failed to initialize Google Sheets: {e}")
            return False

    async def _get_spreadsheet(self, spreadsheet_id: str) -> gspread.Spreadsheet:
        if spreadsheet_id in self._spreadsheets:
            return self._spreadsheets[spreadsheet_id]

        if not await self.initialize():
            raise RuntimeError("Google Sheets is not configured")

        spreadsheet = await call_sheets_api(
            lambda: self.client.open_by_key(spreadsheet_id),
            TIMEOUT_READ,
            f"Sheets.open_by_key({spreadsheet_id})",
        )
        self._spreadsheets[spreadsheet_id] = spreadsheet
        return spreadsheet

    async def _call(self, spreadsheet_id: str, operation: str, timeout: float, call):
        spreadsheet = await self._get_spreadsheet(spreadsheet_id)
        return await call_sheets_api(lambda: call(spreadsheet), timeout, operation)

    # ============================================
    # VALUES API
    # ============================================

    async def read_values(self, spreadsheet_id: str, range_a1: str) -> List[List[Any]]:
        """
        Read a range with unformatted values.

        Returns [] when the tab does not exist or the API rejects the read.
        Network and auth failures are raised once retries are exhausted.
        """
        try:
            response = await self._call(
                spreadsheet_id,
                f"Sheets.values.get({range_a1})",
                TIMEOUT_READ,
                lambda sheet: sheet.values_get(
                    range_a1,
                    params={"valueRenderOption": "UNFORMATTED_VALUE"},
                ),
            )
        except APIError as e:
            if api_error_status(e) in (401, 403):
                logger.error(f"Sheets read not authorized for {range_a1}: {e}")
                raise
            if is_range_parse_error(e):
                logger.info(f"Range {range_a1} not found, treating as empty")
            else:
                logger.warning(f"Sheets read failed for {range_a1}: {e}")
            return []
        except RetryExhausted as e:
            if isinstance(e.__cause__, APIError):
                logger.warning(f"Sheets read failed for {range_a1} after retries: {e}")
                return []
            raise

        return (response or {}).get("values", [])

    async def update_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        values: List[List[Any]],
    ) -> Dict[str, Any]:
        """Overwrite a range with raw values. Raises on failure."""
        return await self._call(
            spreadsheet_id,
            f"Sheets.values.update({range_a1})",
            TIMEOUT_WRITE,
            lambda sheet: sheet.values_update(
                range_a1,
                params={"valueInputOption": "RAW"},
                body={"values": values},
            ),
        )

    async def append_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        values: List[List[Any]],
    ) -> Dict[str, Any]:
        """Append rows after the last row of the range. Raises on failure."""
        return await self._call(
            spreadsheet_id,
            f"Sheets.values.append({range_a1})",
            TIMEOUT_WRITE,
            lambda sheet: sheet.values_append(
                range_a1,
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                body={"values": values},
            ),
        )


# Singleton instance
_sheets_integration: Optional[GoogleSheetsIntegration] = None


def get_sheets_integration() -> GoogleSheetsIntegration:
    """Get the shared Sheets integration."""
    global _sheets_integration
    if _sheets_integration is None:
        _sheets_integration = GoogleSheetsIntegration()
    return _sheets_integration
