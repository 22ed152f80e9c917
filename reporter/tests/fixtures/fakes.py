"""
In-memory collaborators for coordinator and API tests.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from reporter.app.core.config import Settings
from reporter.app.core.errors import StoreError
from reporter.app.services.drive_api import UploadResult


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "supabase_url": "https://example.supabase.co",
        "supabase_service_role_key": "service-role-key",
        "google_service_account_email": "reporter@project.iam.gserviceaccount.com",
        "google_drive_folder_id": "folder-from-env",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def rsa_private_key_pem() -> Tuple[str, rsa.RSAPublicKey]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return pem, key.public_key()


class InMemoryStore:
    """Stands in for SupabaseClient."""

    def __init__(
        self,
        reports: Optional[Dict[Any, dict]] = None,
        objects: Optional[Dict[Tuple[str, str], Tuple[bytes, str]]] = None,
        fail_updates: bool = False,
    ):
        self.reports = reports or {}
        self.objects = objects or {}
        self.fail_updates = fail_updates
        self.updates: List[Tuple[Any, dict]] = []
        self.fetches: List[Any] = []

    def fetch_report(self, report_id):
        self.fetches.append(report_id)
        report = self.reports.get(report_id)
        return copy.deepcopy(report) if report is not None else None

    def update_report(self, report_id, values):
        if self.fail_updates:
            raise StoreError("Failed to update driver_daily_reports (500: boom).")
        self.updates.append((report_id, dict(values)))
        self.reports.setdefault(report_id, {}).update(values)

    def download_object(self, bucket: str, path: str):
        try:
            return self.objects[(bucket, path)]
        except KeyError:
            raise StoreError(f"Failed to download {bucket}/{path} (404: Object not found).")


class FakePublisher:
    """Stands in for ArtifactPublisher; records every publish call."""

    def __init__(self, result: Optional[UploadResult] = None, error: Optional[Exception] = None):
        self.result = result or UploadResult(
            file_id="file-123",
            web_view_link="https://drive.google.com/file/d/file-123/view?usp=drivesdk",
            web_content_link="https://drive.google.com/uc?id=file-123&export=download",
        )
        self.error = error
        self.calls: List[dict] = []

    def publish(self, data, file_name, folder_id=None, make_public=True):
        self.calls.append(
            {
                "data": data,
                "file_name": file_name,
                "folder_id": folder_id,
                "make_public": make_public,
            }
        )
        if self.error is not None:
            raise self.error
        return self.result
