# services/thumbnail_service.py
"""
Preview generation for uploaded media.

Images and GIFs are cropped to cover a 250x250 box with Pillow; videos get a
single frame grabbed at half their duration with ffmpeg. Every failure path
resolves to ``None`` so the caller can store the file without a thumbnail.
"""
import asyncio
import io
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageOps, ImageSequence

from feednana.config import Settings, get_settings
from feednana.services.storage_service import StorageService

logger = logging.getLogger(__name__)

TARGET_SIZE = 250
MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB
BMP_MIME_TYPES = ("image/bmp", "image/x-ms-bmp")


def thumbnail_key(hashed_file_name: str, extension: str) -> str:
    stem, dot, _ = hashed_file_name.rpartition(".")
    if not dot:
        stem = hashed_file_name
    return f"thumbnails/{stem}.{extension}"


def _exceeds_target(image: Image.Image) -> bool:
    width, height = image.size
    return width > TARGET_SIZE or height > TARGET_SIZE


def _cover(image: Image.Image) -> Image.Image:
    return ImageOps.fit(image, (TARGET_SIZE, TARGET_SIZE), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def _to_png(image: Image.Image) -> bytes:
    if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        image = image.convert("RGBA")
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


class ThumbnailService:
    def __init__(self, storage: StorageService, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()

    async def generate_thumbnail(self, data: bytes, mime_type: str, hashed_file_name: str) -> Optional[str]:
        """Derive and upload a preview; return its storage key, or None when there is none."""
        try:
            if len(data) > MAX_FILE_SIZE:
                logger.info(f"Skipping thumbnail for {hashed_file_name}: {len(data)} bytes")
                return None

            # Decoding and ffmpeg run in a worker thread so the event loop keeps serving
            if mime_type.startswith("image/"):
                derived = await asyncio.to_thread(self._image_thumbnail, data, mime_type, hashed_file_name)
            elif mime_type.startswith("video/"):
                derived = await asyncio.to_thread(self._video_thumbnail, data, hashed_file_name)
            else:
                return None

            key, body, content_type = derived
            self.storage.upload_file(key, body, content_type)
            logger.info(f"Thumbnail for {hashed_file_name} stored at {key}")
            return key
        except Exception as e:
            logger.error(f"Error generating thumbnail for {hashed_file_name}: {e}")
            return None

    def _image_thumbnail(self, data: bytes, mime_type: str, hashed_file_name: str) -> Tuple[str, bytes, str]:
        if mime_type == "image/gif":
            return self._gif_thumbnail(data, hashed_file_name)

        if mime_type == "image/svg+xml":
            # Vector graphics scale on their own
            return thumbnail_key(hashed_file_name, "svg"), data, mime_type

        with Image.open(io.BytesIO(data)) as image:
            image.load()
            if _exceeds_target(image):
                image = _cover(image)
            # Re-encode even when small so the bytes match the .png key and content type
            body = _to_png(image)
        return thumbnail_key(hashed_file_name, "png"), body, "image/png"

    def _gif_thumbnail(self, data: bytes, hashed_file_name: str) -> Tuple[str, bytes, str]:
        with Image.open(io.BytesIO(data)) as image:
            if not _exceeds_target(image):
                return thumbnail_key(hashed_file_name, "gif"), data, "image/gif"

            if not getattr(image, "is_animated", False):
                image.load()
                return thumbnail_key(hashed_file_name, "png"), _to_png(_cover(image)), "image/png"

            frames, durations = [], []
            for frame in ImageSequence.Iterator(image):
                durations.append(frame.info.get("duration", 100))
                frames.append(_cover(frame.convert("RGBA")))
            out = io.BytesIO()
            frames[0].save(
                out,
                format="GIF",
                save_all=True,
                append_images=frames[1:],
                duration=durations,
                loop=image.info.get("loop", 0),
                disposal=2,
            )
        return thumbnail_key(hashed_file_name, "gif"), out.getvalue(), "image/gif"

    def _video_thumbnail(self, data: bytes, hashed_file_name: str) -> Tuple[str, bytes, str]:
        temp_video_path = None
        temp_thumbnail_path = None
        try:
            with tempfile.NamedTemporaryFile(delete=False, prefix="video-", suffix=".tmp") as tmp_in:
                tmp_in.write(data)
                temp_video_path = tmp_in.name
            with tempfile.NamedTemporaryFile(delete=False, prefix="thumb-", suffix=".png") as tmp_out:
                temp_thumbnail_path = tmp_out.name

            midpoint = self._probe_duration(temp_video_path) / 2
            cmd = [
                self.settings.ffmpeg_binary,
                "-ss", f"{midpoint:.3f}",
                "-i", temp_video_path,
                "-vframes", "1",
                "-vf", f"scale={TARGET_SIZE}:{TARGET_SIZE}",
                "-y",
                temp_thumbnail_path,
            ]
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.settings.ffmpeg_timeout)
            if result.returncode != 0:
                raise RuntimeError(f"ffmpeg frame extraction failed: {result.stderr[-200:]}")

            body = Path(temp_thumbnail_path).read_bytes()
            if not body:
                raise RuntimeError("ffmpeg produced an empty frame")
            return thumbnail_key(hashed_file_name, "png"), body, "image/png"
        finally:
            for path in (temp_video_path, temp_thumbnail_path):
                if path and os.path.exists(path):
                    os.unlink(path)

    def _probe_duration(self, path: str) -> float:
        cmd = [
            self.settings.ffprobe_binary,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.settings.ffmpeg_timeout)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed: {result.stderr[-200:]}")
        return float(result.stdout.strip())
