"""
Google Cloud Storage client module.
Holds original, staged and signed document bytes; issues V4 signed URLs.
"""
import logging
import unicodedata
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

import google.auth
from google.api_core import exceptions as gcs_exceptions
from google.auth.transport.requests import Request
from google.cloud import storage
from google.cloud.storage import Blob

from legalnexus.config import get_settings, Settings
from legalnexus.exceptions import StorageError

logger = logging.getLogger(__name__)


def validate_storage_path(path: str) -> str:
    """
    Validate an object path coming from a client or the database.

    Raises ValueError for path traversal attempts or absolute paths.
    """
    if not path or not path.strip():
        raise ValueError("Storage path cannot be empty")
    if ".." in path.split("/"):
        raise ValueError("Path traversal not allowed")
    if path.startswith("/"):
        raise ValueError("Absolute paths not allowed")
    return path.strip()


def _ascii_fallback(filename: str) -> str:
    """ASCII-only filename for clients that ignore filename*."""
    decomposed = unicodedata.normalize("NFKD", filename)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return "".join(c if 32 <= ord(c) < 127 and c != '"' else "_" for c in stripped)


def _encode_filename_for_header(filename: str) -> str:
    """
    Encode filename for Content-Disposition header (RFC 5987/RFC 6266).
    Hebrew file names are common, so the UTF-8 form is always provided.
    """
    try:
        filename.encode("ascii")
        safe_filename = filename.replace('"', '\\"')
        return f'attachment; filename="{safe_filename}"'
    except UnicodeEncodeError:
        encoded = quote(filename, safe="")
        return f"attachment; filename=\"{_ascii_fallback(filename)}\"; filename*=UTF-8''{encoded}"


class GCSClient:
    """Google Cloud Storage client wrapper."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.require("gcs_bucket"))
        return self._bucket

    def _generate_iam_signed_url(
        self,
        blob: Blob,
        method: str,
        expiration_delta: timedelta,
        content_type: Optional[str] = None,
        response_disposition: Optional[str] = None,
    ) -> str:
        """
        Generates a V4 signed URL using the runtime service account's identity (IAM).
        Works on Cloud Run without a private key file.
        """
        credentials, _ = google.auth.default()
        credentials.refresh(Request())

        return blob.generate_signed_url(
            version="v4",
            expiration=expiration_delta,
            method=method,
            content_type=content_type,
            response_disposition=response_disposition,
            service_account_email=credentials.service_account_email,
            access_token=credentials.token,
        )

    def generate_upload_signed_url(self, object_path: str, content_type: str) -> str:
        """Generate a V4 PUT URL for a browser upload to object_path."""
        blob = self.bucket.blob(validate_storage_path(object_path))
        expiration_delta = timedelta(minutes=self.settings.gcs_signed_url_expiration_minutes)
        return self._generate_iam_signed_url(
            blob=blob,
            method="PUT",
            expiration_delta=expiration_delta,
            content_type=content_type,
        )

    def generate_download_signed_url(
        self,
        object_path: str,
        expiration_minutes: Optional[int] = None,
        filename: Optional[str] = None,
    ) -> str:
        """
        Generate a V4 signed URL for downloading a file using IAM.
        Raises FileNotFoundError if the object does not exist.
        """
        blob = self.bucket.blob(validate_storage_path(object_path))
        if not blob.exists():
            raise FileNotFoundError(f"File not found: {object_path}")

        expiration_delta = timedelta(
            minutes=expiration_minutes or self.settings.gcs_signed_url_expiration_minutes
        )
        response_disposition = _encode_filename_for_header(filename) if filename else None

        return self._generate_iam_signed_url(
            blob=blob,
            method="GET",
            expiration_delta=expiration_delta,
            response_disposition=response_disposition,
        )

    def upload_bytes(self, object_path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Upload bytes; returns the object path."""
        blob = self.bucket.blob(validate_storage_path(object_path))
        try:
            blob.upload_from_string(data, content_type=content_type or "application/octet-stream")
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Upload failed for {object_path}: {e}") from e
        logger.info(f"Uploaded {len(data)} bytes to {object_path}")
        return object_path

    def download_bytes(self, object_path: str) -> bytes:
        """
        Download an object into memory.
        Raises FileNotFoundError if the object does not exist.
        """
        blob = self.bucket.blob(validate_storage_path(object_path))
        try:
            return blob.download_as_bytes()
        except gcs_exceptions.NotFound as e:
            raise FileNotFoundError(f"File not found in GCS: {object_path}") from e
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Download failed for {object_path}: {e}") from e

    def delete(self, object_path: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        blob = self.bucket.blob(validate_storage_path(object_path))
        try:
            blob.delete()
        except gcs_exceptions.NotFound:
            return False
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"Delete failed for {object_path}: {e}") from e
        logger.info(f"Deleted {object_path}")
        return True


# Singleton instance
_gcs_client: Optional[GCSClient] = None


def get_gcs_client() -> GCSClient:
    """Get the GCS client singleton."""
    global _gcs_client
    if _gcs_client is None:
        _gcs_client = GCSClient()
    return _gcs_client
