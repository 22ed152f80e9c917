"""
Supabase data store access over PostgREST and the Storage API.

Only the three operations the report pipeline needs are exposed:
fetching a report row, updating output columns on it, and downloading
a storage object (templates).
"""

import logging
from typing import Annotated, Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from reporter.app.core.config import Settings
from reporter.app.core.errors import ConfigurationError, StoreError

logger = logging.getLogger("reporter.store")


class SupabaseClient:
    def __init__(
        self,
        settings: Annotated[Settings, "Application configuration"],
        http_client: Annotated[httpx.Client, "Persistent HTTP client"],
    ):
        self.settings = settings
        self.client = http_client
        self.table = settings.report_table

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _base(self) -> Tuple[str, str]:
        url = self.settings.supabase_url
        key = self.settings.supabase_service_role_key
        if not url or key is None or not key.get_secret_value().strip():
            raise ConfigurationError(
                "Missing Supabase configuration. Set SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY."
            )
        return url.rstrip("/"), key.get_secret_value()

    def _headers(self, key: str, **extra: str) -> Dict[str, str]:
        return {"apikey": key, "Authorization": f"Bearer {key}", **extra}

    def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"Failed to {action} ({exc}).") from exc

        if response.status_code >= 400:
            logger.error(
                "supabase_request_failed",
                extra={
                    "action": action,
                    "status_code": response.status_code,
                    "response_body": response.text,
                },
            )
            raise StoreError(
                f"Failed to {action} ({response.status_code}: {_error_message(response)})."
            )
        return response

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def fetch_report(self, report_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        """Return the report row, or None when it does not exist."""
        base, key = self._base()
        response = self._request(
            "GET",
            f"{base}/rest/v1/{self.table}",
            f"fetch {self.table} record",
            params={"select": "*", "id": f"eq.{report_id}", "limit": "1"},
            headers=self._headers(key, Accept="application/json"),
        )
        try:
            rows = response.json()
        except ValueError as exc:
            raise StoreError(f"Invalid response while fetching {self.table} record.") from exc
        if not rows:
            return None
        return rows[0]

    def update_report(self, report_id: Union[int, str], values: Mapping[str, Any]) -> None:
        base, key = self._base()
        self._request(
            "PATCH",
            f"{base}/rest/v1/{self.table}",
            f"update {self.table}",
            params={"id": f"eq.{report_id}"},
            headers=self._headers(key, Prefer="return=minimal"),
            json=dict(values),
        )
        logger.info(
            "report_reference_saved",
            extra={"report_id": str(report_id), "columns": sorted(values)},
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def download_object(self, bucket: str, path: str) -> Tuple[bytes, Optional[str]]:
        base, key = self._base()
        response = self._request(
            "GET",
            f"{base}/storage/v1/object/{quote(bucket)}/{quote(path)}",
            f"download {bucket}/{path}",
            headers=self._headers(key),
        )
        return response.content, response.headers.get("content-type")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)
