import json
import logging
import uuid
from dataclasses import dataclass
from typing import Annotated, Optional, Tuple
from urllib.parse import quote

import httpx

from reporter.app.core.config import Settings
from reporter.app.core.errors import PublishError
from reporter.app.services.google_auth import ServiceAccountTokenProvider

logger = logging.getLogger("reporter.drive_api")

PDF_MIME_TYPE = "application/pdf"
UPLOAD_FIELDS = "id,webViewLink,webContentLink"


def file_view_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"


class DriveApiError(PublishError):
    """Raised when the Drive API answers with a non-success status."""


class UploadError(DriveApiError):
    """Raised when a file upload is rejected or cannot be sent."""


@dataclass(frozen=True)
class UploadResult:
    file_id: str
    web_view_link: Optional[str] = None
    web_content_link: Optional[str] = None

    def preferred_link(self, prefer_download: bool = False) -> str:
        """
        The link to surface to callers.

        View link first unless ``prefer_download``; the canonical view
        URL when Drive returned neither.
        """
        if prefer_download:
            link = self.web_content_link or self.web_view_link
        else:
            link = self.web_view_link or self.web_content_link
        return link or file_view_url(self.file_id)


@dataclass(frozen=True)
class ShareResult:
    """Outcome of the best-effort public sharing call. Inspected for logging only."""

    file_id: str
    shared: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class GoogleDriveClient:
    """
    Minimal Drive v3 client: multipart upload, permission grant and media
    download.
    """

    def __init__(
        self,
        settings: Annotated[Settings, "Application configuration"],
        http_client: Annotated[httpx.Client, "Persistent HTTP client"],
        token_provider: ServiceAccountTokenProvider,
    ):
        self.settings = settings
        self.client = http_client
        self.tokens = token_provider
        self.api_url = settings.google_drive_api_url.rstrip("/")
        self.upload_url = settings.google_drive_upload_url.rstrip("/")

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.tokens.get_token()}"}

    def _check_auth(self, response: httpx.Response) -> None:
        # A rejected token is dropped so the next call exchanges a new one.
        if response.status_code == 401:
            logger.warning("drive_token_rejected")
            self.tokens.invalidate()

    def _file_url(self, file_id: str, suffix: str = "") -> str:
        return f"{self.api_url}/files/{quote(file_id, safe='')}{suffix}"

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    @staticmethod
    def _multipart_body(metadata: dict, data: bytes, mime_type: str) -> Tuple[bytes, str]:
        boundary = f"reporter-{uuid.uuid4().hex}"
        head = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {mime_type}\r\n\r\n"
        ).encode("utf-8")
        tail = f"\r\n--{boundary}--\r\n".encode("ascii")
        return head + data + tail, f"multipart/related; boundary={boundary}"

    def upload_file(
        self,
        data: bytes,
        file_name: str,
        folder_id: Optional[str] = None,
        mime_type: str = PDF_MIME_TYPE,
    ) -> UploadResult:
        metadata = {"name": file_name, "mimeType": mime_type}
        if folder_id:
            metadata["parents"] = [folder_id]

        body, content_type = self._multipart_body(metadata, data, mime_type)
        headers = self._auth_headers()
        headers["Content-Type"] = content_type

        try:
            response = self.client.post(
                f"{self.upload_url}/files",
                params={
                    "uploadType": "multipart",
                    "fields": UPLOAD_FIELDS,
                    "supportsAllDrives": "true",
                },
                headers=headers,
                content=body,
            )
        except httpx.HTTPError as exc:
            raise UploadError(f"Google Drive upload failed: {exc}") from exc

        self._check_auth(response)
        if response.status_code >= 400:
            logger.error(
                "drive_upload_failed",
                extra={
                    "status_code": response.status_code,
                    "response_body": response.text,
                    "file_name": file_name,
                },
            )
            raise UploadError(
                f"Google Drive returned error {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
            file_id = payload["id"]
        except (ValueError, KeyError) as exc:
            raise UploadError("Google Drive upload response did not contain a file id.") from exc

        logger.info("drive_file_uploaded", extra={"file_id": file_id, "file_name": file_name})
        return UploadResult(
            file_id=file_id,
            web_view_link=payload.get("webViewLink"),
            web_content_link=payload.get("webContentLink"),
        )

    # ------------------------------------------------------------------
    # Sharing (best effort)
    # ------------------------------------------------------------------

    def grant_public_read(self, file_id: str) -> ShareResult:
        """Grant anyone-with-link read access. Never raises."""
        try:
            response = self.client.post(
                self._file_url(file_id, "/permissions"),
                params={"supportsAllDrives": "true"},
                headers=self._auth_headers(),
                json={"role": "reader", "type": "anyone"},
            )
        except Exception as exc:
            return ShareResult(file_id=file_id, shared=False, error=str(exc))

        self._check_auth(response)
        if response.status_code >= 400:
            return ShareResult(
                file_id=file_id,
                shared=False,
                status_code=response.status_code,
                error=response.text,
            )
        return ShareResult(file_id=file_id, shared=True, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def download_file(self, file_id: str) -> Tuple[bytes, Optional[str]]:
        try:
            response = self.client.get(
                self._file_url(file_id),
                params={"alt": "media", "supportsAllDrives": "true"},
                headers=self._auth_headers(),
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            raise DriveApiError(f"Google Drive download failed: {exc}") from exc

        self._check_auth(response)
        if response.status_code >= 400:
            raise DriveApiError(
                f"Google Drive download failed ({response.status_code})."
            )
        return response.content, response.headers.get("content-type")
