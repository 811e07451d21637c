# services/upload_service.py
import hashlib
import logging
import math
import time
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

import redis
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from feednana.config import Settings, get_settings
from feednana.exceptions import RecaptchaError, ValidationError
from feednana.models.database import Album, File
from feednana.models.upload_models import (
    AnonIdentity,
    CompleteUploadInput,
    FileInput,
    FileUploadResult,
    UploadSession,
    UploadStatus,
    UploadUrls,
)
from feednana.services.content_service import ContentService
from feednana.services.event_bus import BROWSE_ITEMS_UPDATED, FILE_COUNT_UPDATED, EventBus
from feednana.services.recaptcha_service import RecaptchaService
from feednana.services.storage_service import StorageService
from feednana.services.thumbnail_service import ThumbnailService

logger = logging.getLogger(__name__)

PART_SIZE = 5 * 1024 * 1024  # must match the client's chunk size
KEY_PREFIX = "files/"
SESSION_PREFIX = "upload_session:"


def part_count(file_size: int) -> int:
    return math.ceil(file_size / PART_SIZE)


def make_storage_key(file_name: str) -> str:
    """``files/<md5>.<ext>``; a random salt keeps same-name, same-millisecond uploads apart."""
    millis = int(time.time() * 1000)
    digest = hashlib.md5(f"{file_name}{millis}{uuid.uuid4().hex}".encode("utf-8")).hexdigest()
    _, dot, ext = file_name.rpartition(".")
    if dot and ext:
        return f"{KEY_PREFIX}{digest}.{ext}"
    return f"{KEY_PREFIX}{digest}"


def wants_thumbnail(mime_type: str) -> bool:
    return mime_type.startswith("image/") or mime_type.startswith("video/")


class UploadService:
    def __init__(
        self,
        storage: StorageService,
        thumbnails: ThumbnailService,
        redis_client: redis.Redis,
        recaptcha: RecaptchaService,
        event_bus: EventBus,
        content: Optional[ContentService] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.thumbnails = thumbnails
        self.redis_client = redis_client
        self.recaptcha = recaptcha
        self.event_bus = event_bus
        self.content = content or ContentService(event_bus)
        self.settings = settings or get_settings()

        self.session_ttl = timedelta(hours=self.settings.session_ttl_hours)

    async def initiate_upload(self, files: List[FileInput], recaptcha_token: Optional[str] = None) -> List[UploadUrls]:
        """Open one multipart upload per file and presign every part URL, in submission order."""
        if not files:
            raise ValidationError("At least one file is required")

        # Nothing touches storage until the token is accepted
        if self.recaptcha.required:
            if not recaptcha_token or not await self.recaptcha.verify(recaptcha_token):
                raise RecaptchaError("reCAPTCHA validation failed")

        upload_urls = []
        for file in files:
            key = make_storage_key(file.file_name)
            upload_id = self.storage.create_multipart_upload(key, file.mime_type)

            num_parts = part_count(file.file_size)
            urls = [
                self.storage.get_presigned_upload_url(key, upload_id, part_number)
                for part_number in range(1, num_parts + 1)
            ]

            await self._store_session(
                UploadSession(
                    key=key,
                    upload_id=upload_id,
                    file_name=file.file_name,
                    file_size=file.file_size,
                    mime_type=file.mime_type,
                    part_count=num_parts,
                    created_at=datetime.utcnow(),
                )
            )
            logger.info(f"Initiated upload {upload_id} for {file.file_name} at {key} ({num_parts} parts)")
            upload_urls.append(UploadUrls(upload_id=upload_id, urls=urls, key=key))

        return upload_urls

    async def complete_upload(
        self,
        db: Session,
        uploads: List[CompleteUploadInput],
        anon: AnonIdentity,
        name: Optional[str] = None,
        manifesto: str = "",
        disable_comments: bool = False,
        unlisted: bool = False,
        anonymous: bool = False,
        user_id: Optional[int] = None,
    ) -> FileUploadResult:
        """
        Stitch every upload of a batch and persist its rows.

        Multipart completion and row inserts share one transaction: either the
        whole batch is stored or none of it is. Thumbnails are derived after
        commit and can only ever leave ``thumbnail_url`` empty.
        """
        if not uploads:
            raise ValidationError("At least one upload is required")

        owner_id = None if anonymous else user_id
        owner = {
            "user_id": owner_id,
            "anon_id": anon.anon_id,
            "anon_text_color": anon.anon_text_color,
            "anon_text_background": anon.anon_text_background,
            "unlisted": bool(unlisted),
        }

        album = None
        files = []
        completed_keys = []
        try:
            if len(uploads) > 1:
                album = Album(name=name, manifesto=manifesto or "", **owner)
                db.add(album)
                db.flush()

            for upload in uploads:
                self.storage.complete_multipart_upload(
                    upload.key,
                    upload.upload_id,
                    [part.to_s3() for part in upload.parts],
                )
                completed_keys.append(upload.key)

                file = File(
                    name=name if name is not None else upload.name,
                    manifesto=manifesto or "",
                    disable_comments=bool(disable_comments),
                    file_name=upload.file_name,
                    file_size=upload.file_size,
                    mime_type=upload.mime_type,
                    hashed_file_name=upload.key.split("/")[-1],
                    file_url=self.storage.get_file_url(upload.key),
                    album_id=album.id if album else None,
                    **owner,
                )
                db.add(file)
                db.flush()
                files.append(file)

            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Upload batch failed after {len(completed_keys)} of {len(uploads)} files: {e}")
            for key in completed_keys:
                self.storage.delete_file(key)
                # Stitched and deleted, so there is no multipart upload left to abort
                await self._mark_status(key, UploadStatus.ABORTED)
            raise

        derived = False
        for file, upload in zip(files, uploads):
            if wants_thumbnail(file.mime_type):
                file.thumbnail_url = await self._derive_thumbnail(upload.key, file.mime_type, file.hashed_file_name)
                derived = derived or file.thumbnail_url is not None
        if derived:
            db.commit()

        # The batch is stored from here on; ledger and events can only log
        for upload in uploads:
            await self._mark_status(upload.key, UploadStatus.COMPLETED)

        result = FileUploadResult(
            file=self.content.file_out(db, files[0]),
            album=self.content.album_out(db, album) if album else None,
        )
        self._publish_batch(db, result)
        return result

    async def _derive_thumbnail(self, key: str, mime_type: str, hashed_file_name: str) -> Optional[str]:
        try:
            data = self.storage.download_file(key)
            thumbnail_key = await self.thumbnails.generate_thumbnail(data, mime_type, hashed_file_name)
        except Exception as e:
            logger.error(f"Error generating thumbnail for file {key}: {e}")
            return None
        return self.storage.get_file_url(thumbnail_key) if thumbnail_key else None

    def _publish_batch(self, db: Session, result: FileUploadResult):
        total_files = db.scalar(select(func.count(File.id)).where(File.removed.is_(False)))
        self.event_bus.publish(FILE_COUNT_UPDATED, total_files)

        item = result.album if result.album is not None else result.file
        self.event_bus.publish(BROWSE_ITEMS_UPDATED, item.model_dump(by_alias=True))

    async def get_session(self, key: str) -> Optional[UploadSession]:
        session_data = self.redis_client.get(f"{SESSION_PREFIX}{key}")
        if not session_data:
            return None
        return UploadSession.model_validate_json(session_data)

    async def _mark_status(self, key: str, status: UploadStatus):
        try:
            session = await self.get_session(key)
            if not session:
                logger.warning(f"No ledger entry for upload {key}")
                return
            session.status = status
            session.completed_at = datetime.utcnow()
            await self._store_session(session)
        except redis.RedisError as e:
            logger.error(f"Could not mark upload {key} as {status.value}: {e}")

    async def _store_session(self, session: UploadSession):
        """Store session in Redis"""
        try:
            self.redis_client.setex(
                f"{SESSION_PREFIX}{session.key}",
                int(self.session_ttl.total_seconds()),
                session.model_dump_json(),
            )
        except redis.RedisError as e:
            logger.error(f"Failed to store session {session.key}: {e}")
            raise
