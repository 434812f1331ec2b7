"""
Temporary audio staging in Cloud Storage.

Audio sent as raw bytes is written to a dedicated bucket so the recogniser
can read it by ``gs://`` URI.  The bucket carries a lifecycle rule that
deletes objects after ``retention_days``; that rule is what guarantees
staged audio never lingers, even if the process dies mid-job.  Explicit
:meth:`TempObjectStore.release` calls only free the space sooner.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from .errors import ConfigurationError, StorageError, ValidationError
from .models import StagedAudio

logger = logging.getLogger(__name__)

STAGE_PREFIX = "audio_"
UPLOAD_PREFIX = "uploads/"

UPLOAD_CORS = [
    {
        "origin": ["*"],
        "method": ["PUT", "POST"],
        "responseHeader": ["Content-Type"],
        "maxAgeSeconds": 3600,
    }
]


def sanitize_name(name: Optional[str], fallback: str = "file") -> str:
    """Replace whitespace with ``_`` and drop path separators."""
    clean = re.sub(r"\s", "_", (name or "").strip())
    clean = clean.replace("/", "_").replace("\\", "_")
    return clean or fallback


def split_gcs_uri(uri: str) -> Tuple[str, str]:
    """Split ``gs://bucket/key`` into ``(bucket, key)``."""
    match = re.match(r"^gs://([^/]+)/(.+)$", uri or "")
    if not match:
        raise ValidationError(f"Not a gs:// object URI: {uri!r}")
    return match.group(1), match.group(2)


def _has_delete_rule(bucket: storage.Bucket) -> bool:
    return any(rule.get("action", {}).get("type") == "Delete" for rule in bucket.lifecycle_rules)


class TempObjectStore:
    """Stages audio in a bucket with a delete-after-age lifecycle rule."""

    def __init__(
        self,
        client: storage.Client,
        bucket_name: str,
        *,
        location: str = "US",
        retention_days: int = 1,
        upload_url_ttl_seconds: int = 900,
    ) -> None:
        self._client = client
        self.bucket_name = bucket_name
        self.location = location
        self.retention_days = retention_days
        self.upload_url_ttl_seconds = upload_url_ttl_seconds
        self._bucket: Optional[storage.Bucket] = None
        self._lock = threading.Lock()

    def ensure_container(self) -> storage.Bucket:
        """Make sure the bucket exists and expires its objects.

        Safe to call repeatedly and from several processes at once: losing a
        creation race to another caller counts as success.
        """
        with self._lock:
            if self._bucket is not None:
                return self._bucket
            try:
                bucket = self._client.lookup_bucket(self.bucket_name)
                if bucket is None:
                    bucket = self._create_bucket()
                elif not _has_delete_rule(bucket):
                    logger.info("Adding lifecycle delete rule to existing bucket %s", self.bucket_name)
                    bucket.add_lifecycle_delete_rule(age=self.retention_days)
                    bucket.patch()
            except api_exceptions.GoogleAPICallError as exc:
                raise StorageError(f"Could not prepare bucket {self.bucket_name}: {exc}") from exc
            self._bucket = bucket
            return bucket

    def _create_bucket(self) -> storage.Bucket:
        logger.info(json.dumps({"event": "create_bucket", "bucket": self.bucket_name}))
        bucket = self._client.bucket(self.bucket_name)
        bucket.storage_class = "STANDARD"
        bucket.cors = UPLOAD_CORS
        bucket.add_lifecycle_delete_rule(age=self.retention_days)
        try:
            return self._client.create_bucket(bucket, location=self.location)
        except api_exceptions.Conflict:
            logger.info("Bucket %s was created concurrently", self.bucket_name)
            return self._client.bucket(self.bucket_name)

    def owns(self, uri: Optional[str]) -> bool:
        prefix = f"gs://{self.bucket_name}/"
        return bool(uri) and uri.startswith(prefix) and len(uri) > len(prefix)

    def stage(
        self,
        data: bytes,
        suggested_name: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> StagedAudio:
        """Upload ``data`` under a unique key and return its locator.

        Raises:
            ValidationError: If ``data`` is empty.
            StorageError: If the bucket cannot be prepared or the upload fails.
        """
        if not data:
            raise ValidationError("No audio received")
        bucket = self.ensure_container()
        key = f"{STAGE_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{sanitize_name(suggested_name)}"
        blob = bucket.blob(key)
        try:
            blob.upload_from_string(data, content_type=content_type or "audio/mpeg")
        except api_exceptions.GoogleAPICallError as exc:
            raise StorageError(f"Could not stage audio as {key}: {exc}") from exc

        staged = StagedAudio(
            bucket=self.bucket_name,
            key=key,
            uri=f"gs://{self.bucket_name}/{key}",
            retention_deadline=datetime.now(timezone.utc) + timedelta(days=self.retention_days),
        )
        logger.info(json.dumps({"event": "stage", "uri": staged.uri, "bytes": len(data)}))
        return staged

    def release(self, locator: Union[StagedAudio, str]) -> bool:
        """Delete a staged object.  Never raises.

        Returns ``True`` when the object is gone, including when it was
        already missing.  URIs outside the temp bucket are left untouched.
        """
        uri = locator.uri if isinstance(locator, StagedAudio) else locator
        if not self.owns(uri):
            logger.info(json.dumps({"event": "release_skipped", "uri": uri}))
            return False
        _, key = split_gcs_uri(uri)
        try:
            self._client.bucket(self.bucket_name).blob(key).delete()
        except api_exceptions.NotFound:
            logger.info(json.dumps({"event": "release", "uri": uri, "already_deleted": True}))
            return True
        except api_exceptions.GoogleAPICallError as exc:
            logger.warning(json.dumps({"event": "release_failed", "uri": uri, "error": str(exc)}))
            return False
        logger.info(json.dumps({"event": "release", "uri": uri}))
        return True

    def create_upload_url(self, file_name: str, content_type: Optional[str] = None) -> dict:
        """Signed, write-only URL for uploading straight into the temp bucket."""
        if not file_name or not isinstance(file_name, str):
            raise ValidationError("fileName is required")
        bucket = self.ensure_container()
        key = f"{UPLOAD_PREFIX}{int(time.time() * 1000)}_{sanitize_name(file_name)}"
        try:
            url = bucket.blob(key).generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=self.upload_url_ttl_seconds),
                method="PUT",
                content_type=content_type,
            )
        except (auth_exceptions.GoogleAuthError, AttributeError) as exc:
            # Signing needs a service-account private key.
            raise ConfigurationError(f"Credentials cannot sign upload URLs: {exc}") from exc
        except api_exceptions.GoogleAPICallError as exc:
            raise StorageError(f"Could not sign upload URL: {exc}") from exc
        storage_uri = f"gs://{self.bucket_name}/{key}"
        logger.info(json.dumps({"event": "upload_url", "uri": storage_uri}))
        return {"uploadURL": url, "storageURI": storage_uri}
