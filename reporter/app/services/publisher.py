"""
Artifact publishing.

Uploads a rendered report to Google Drive and, unless disabled, grants
anyone-with-link read access. The grant is a side task: its outcome is
logged and never affects the result of the upload.
"""

import logging
from typing import Optional

from reporter.app.core.config import Settings
from reporter.app.services.drive_api import GoogleDriveClient, ShareResult, UploadResult

logger = logging.getLogger("reporter.publisher")


class ArtifactPublisher:
    def __init__(self, settings: Settings, drive: GoogleDriveClient):
        self.settings = settings
        self.drive = drive

    def _log_share(self, share: ShareResult) -> None:
        if share.shared:
            logger.info("drive_file_shared", extra={"file_id": share.file_id})
        else:
            logger.warning(
                "drive_share_failed",
                extra={
                    "file_id": share.file_id,
                    "status_code": share.status_code,
                    "error": share.error,
                },
            )

    def publish(
        self,
        data: bytes,
        file_name: str,
        folder_id: Optional[str] = None,
        make_public: bool = True,
    ) -> UploadResult:
        """
        Upload ``data`` as ``file_name``.

        ``folder_id`` overrides the configured Drive folder. Raises
        UploadError or CredentialExchangeError when the upload itself
        fails.
        """
        target_folder = (folder_id or "").strip() or self.settings.google_drive_folder_id
        result = self.drive.upload_file(data, file_name, folder_id=target_folder)

        if make_public is not False:
            self._log_share(self.drive.grant_public_read(result.file_id))

        return result
