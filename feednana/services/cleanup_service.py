# services/cleanup_service.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis
from pydantic import ValidationError as PydanticValidationError

from feednana.config import Settings, get_settings
from feednana.exceptions import StorageError
from feednana.models.upload_models import UploadSession, UploadStatus
from feednana.services.storage_service import StorageService
from feednana.services.upload_service import KEY_PREFIX, SESSION_PREFIX

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CleanupService:
    """Reaps multipart uploads that were initiated but never completed."""

    def __init__(self, storage: StorageService, redis_client: redis.Redis, settings: Optional[Settings] = None):
        self.storage = storage
        self.redis_client = redis_client
        self.settings = settings or get_settings()

        self.stale_after = timedelta(hours=self.settings.stale_session_hours)
        self.retain_completed = timedelta(hours=self.settings.completed_retention_hours)

    async def start_cleanup_scheduler(self):
        """Start the cleanup scheduler"""
        while True:
            try:
                await self.cleanup_expired_sessions()
                await self.cleanup_incomplete_uploads()

                await asyncio.sleep(self.settings.cleanup_interval_seconds)

            except asyncio.CancelledError:
                logger.info("Cleanup scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"Error in cleanup scheduler: {e}")
                await asyncio.sleep(60)  # Wait 1 minute before retrying

    async def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """Abort stale pending sessions and drop finished ones past retention."""
        now = now or datetime.utcnow()
        try:
            keys = self.redis_client.keys(f"{SESSION_PREFIX}*")
        except redis.RedisError as e:
            logger.error(f"Redis unavailable for cleanup: {e}")
            return 0

        logger.info(f"Found {len(keys)} sessions to check for cleanup")
        cleaned_count = 0
        for key in keys:
            try:
                session_data = self.redis_client.get(key)
                if not session_data:
                    continue

                try:
                    session = UploadSession.model_validate_json(session_data)
                except PydanticValidationError:
                    logger.error(f"Deleting unreadable session entry {key!r}")
                    self.redis_client.delete(key)
                    cleaned_count += 1
                    continue

                age = now - _naive_utc(session.created_at)
                if session.status == UploadStatus.PENDING:
                    if age <= self.stale_after:
                        continue
                    self.storage.abort_multipart_upload(session.key, session.upload_id)
                    logger.info(f"Aborted stale upload {session.upload_id} for {session.key}")
                elif age <= self.retain_completed:
                    continue

                self.redis_client.delete(key)
                cleaned_count += 1

            except (StorageError, redis.RedisError) as e:
                logger.error(f"Error processing session {key!r}: {e}")

        logger.info(f"Session cleanup completed. Cleaned {cleaned_count} sessions")
        return cleaned_count

    async def cleanup_incomplete_uploads(self, now: Optional[datetime] = None) -> int:
        """Clean up incomplete multipart uploads directly from storage"""
        logger.info("Starting incomplete uploads cleanup")
        cutoff_date = (now or datetime.utcnow()) - self.stale_after

        try:
            uploads = self.storage.list_multipart_uploads(prefix=KEY_PREFIX)
        except StorageError as e:
            logger.error(f"Error during storage cleanup: {e}")
            return 0

        cleanup_count = 0
        for upload in uploads:
            if _naive_utc(upload["Initiated"]) >= cutoff_date:
                continue
            try:
                self.storage.abort_multipart_upload(upload["Key"], upload["UploadId"])
                cleanup_count += 1
                logger.info(f"Aborted stale upload: {upload['Key']}")
            except StorageError as e:
                logger.error(f"Failed to abort upload {upload['UploadId']}: {e}")

        logger.info(f"Cleaned up {cleanup_count} incomplete uploads")
        return cleanup_count
