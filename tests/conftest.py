import io
from datetime import datetime

import fakeredis
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from feednana.config import Settings
from feednana.db import init_db
from feednana.exceptions import StorageError
from feednana.services.event_bus import EventBus
from feednana.services.recaptcha_service import RecaptchaService
from feednana.services.thumbnail_service import ThumbnailService
from feednana.services.upload_service import UploadService


class FakeStorage:
    """In-memory stand-in for StorageService that records every call."""

    def __init__(self, cdn_url: str = "https://cdn.test"):
        self.cdn_url = cdn_url
        self.objects = {}
        self.pending = {}
        self.completed = []
        self.aborted = []
        self.deleted = []
        self.fail_complete = set()
        self.fail_download = set()
        self.fail_upload = False
        self._counter = 0

    def create_multipart_upload(self, key, content_type):
        self._counter += 1
        upload_id = f"upload-{self._counter}"
        self.pending[upload_id] = {"Key": key, "UploadId": upload_id, "Initiated": datetime.utcnow()}
        return upload_id

    def get_presigned_upload_url(self, key, upload_id, part_number):
        return f"https://storage.test/{key}?uploadId={upload_id}&partNumber={part_number}"

    def complete_multipart_upload(self, key, upload_id, parts):
        if key in self.fail_complete:
            raise StorageError(f"Failed to complete multipart upload for {key}: InvalidPart")
        upload = self.pending.pop(upload_id, None)
        if upload is not None and upload["Key"] != key:
            raise StorageError(f"Failed to complete multipart upload for {key}: NoSuchUpload")
        self.completed.append((key, upload_id, list(parts)))
        self.objects.setdefault(key, b"")
        return {"Location": f"https://storage.test/{key}"}

    def abort_multipart_upload(self, key, upload_id):
        self.pending.pop(upload_id, None)
        self.aborted.append((key, upload_id))

    def list_multipart_uploads(self, prefix=""):
        return [u for u in self.pending.values() if u["Key"].startswith(prefix)]

    def upload_file(self, key, body, content_type):
        if self.fail_upload:
            raise StorageError(f"Failed to upload {key}")
        self.objects[key] = body
        self.objects[f"{key}#content-type"] = content_type

    def download_file(self, key):
        if key in self.fail_download or key not in self.objects:
            raise StorageError(f"Failed to download {key}")
        return self.objects[key]

    def get_file_url(self, key):
        return f"{self.cdn_url}/{key}"

    def delete_file(self, key):
        self.deleted.append(key)
        self.objects.pop(key, None)


def make_image(fmt: str = "PNG", size=(400, 300), color=(200, 30, 30)) -> bytes:
    mode = "RGB" if fmt in ("JPEG", "BMP") else "RGBA"
    image = Image.new(mode, size, color)
    out = io.BytesIO()
    image.save(out, format=fmt)
    return out.getvalue()


def make_gif(size=(400, 300), frames: int = 3) -> bytes:
    images = [Image.new("RGB", size, (i * 60, 10, 10)) for i in range(frames)]
    out = io.BytesIO()
    if frames > 1:
        images[0].save(out, format="GIF", save_all=True, append_images=images[1:], duration=80, loop=0)
    else:
        images[0].save(out, format="GIF")
    return out.getvalue()


@pytest.fixture
def settings():
    return Settings(
        storage_endpoint="http://storage.test",
        storage_access_key="test-access",
        storage_secret_key="test-secret",
        storage_bucket="feednana-test",
        file_cdn_url="https://cdn.test",
        database_url="sqlite://",
        ffmpeg_binary="/nonexistent/ffmpeg",
        ffprobe_binary="/nonexistent/ffprobe",
        recaptcha_api_key=None,
    )


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def event_bus(redis_client):
    return EventBus(redis_client)


@pytest.fixture
def upload_service(storage, redis_client, event_bus, settings):
    return UploadService(
        storage=storage,
        thumbnails=ThumbnailService(storage, settings),
        redis_client=redis_client,
        recaptcha=RecaptchaService(settings),
        event_bus=event_bus,
        settings=settings,
    )
