"""Chunked upload client: initiate, PUT every part straight to storage, complete."""
import asyncio
import logging
import math
import mimetypes
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import httpx

from feednana.exceptions import UploadError, ValidationError

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
CHUNK_SIZE = 5 * 1024 * 1024  # 5MB, fixed on both sides

ProgressCallback = Callable[[str, float], None]


class UploadState(str, Enum):
    COLLECTING = "collecting"
    INITIATED = "initiated"
    PARTS_IN_FLIGHT = "parts_in_flight"
    COMPLETING = "completing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PendingFile:
    file_name: str
    data: bytes
    mime_type: str

    @property
    def file_size(self) -> int:
        return len(self.data)


def iter_chunks(data: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[Tuple[int, bytes]]:
    """Yield ``(part_number, chunk)`` pairs; part numbers start at 1 and only the last chunk may be short."""
    for i in range(math.ceil(len(data) / chunk_size)):
        yield i + 1, data[i * chunk_size:(i + 1) * chunk_size]


async def upload_parts(
    client: httpx.AsyncClient,
    file: PendingFile,
    urls: List[str],
    on_progress: Optional[ProgressCallback] = None,
) -> List[dict]:
    """
    PUT the chunks of one file in order, one request at a time.

    Stops at the first failed part; later parts are never sent.
    """
    total = math.ceil(file.file_size / CHUNK_SIZE)
    if len(urls) != total:
        raise UploadError(f"Expected {total} part URLs for {file.file_name}, got {len(urls)}")

    parts = []
    for part_number, chunk in iter_chunks(file.data):
        try:
            response = await client.put(urls[part_number - 1], content=chunk)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UploadError(f"Upload error on part {part_number} of {file.file_name}: {e}") from e

        etag = response.headers.get("ETag")
        if not etag:
            raise UploadError(f"Storage returned no ETag for part {part_number} of {file.file_name}")
        parts.append({"ETag": etag, "PartNumber": part_number})

        if on_progress:
            on_progress(file.file_name, part_number / total * 100)

    return parts


def redirect_path(result: dict) -> str:
    if result.get("album"):
        return f"/album/{result['album']['id']}"
    return f"/file/{result['file']['id']}"


class FeednanaUploader:
    """Collects files and pushes them through one upload batch."""

    def __init__(
        self,
        api_url: str = API_BASE_URL,
        token: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.on_progress = on_progress
        self.transport = transport
        self.timeout = timeout

        self.files: List[PendingFile] = []
        self.progress: Dict[int, float] = {}
        self.state = UploadState.COLLECTING

    def add_file(self, file_name: str, data: bytes, mime_type: Optional[str] = None):
        mime_type = mime_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        self.progress[len(self.files)] = 0.0
        self.files.append(PendingFile(file_name=file_name, data=data, mime_type=mime_type))

    def add_path(self, path: str):
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        self.add_file(file_path.name, file_path.read_bytes())

    def _reporter(self, index: int) -> ProgressCallback:
        """Progress is tracked per selected file, so two files with the same name stay apart."""
        def report(file_name: str, progress: float):
            self.progress[index] = progress
            if self.on_progress:
                self.on_progress(file_name, progress)
        return report

    async def _post(self, client: httpx.AsyncClient, path: str, payload: dict):
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = await client.post(f"{self.api_url}{path}", json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UploadError(f"Server error {e.response.status_code}: {e.response.text}") from e
        except httpx.HTTPError as e:
            raise UploadError(f"Server unavailable: {e}") from e
        return resp.json()

    async def upload_batch(
        self,
        name: Optional[str] = None,
        manifesto: str = "",
        disable_comments: bool = False,
        unlisted: bool = False,
        anonymous: bool = False,
        recaptcha_token: str = "",
    ) -> dict:
        if not self.files:
            raise ValidationError("Please select at least one file to upload.")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                self.state = UploadState.INITIATED
                upload_urls = await self._post(client, "/upload/initiate", {
                    "files": [
                        {"name": name, "fileName": f.file_name, "fileSize": f.file_size, "mimeType": f.mime_type}
                        for f in self.files
                    ],
                    "recaptchaToken": recaptcha_token,
                })

                self.state = UploadState.PARTS_IN_FLIGHT
                part_lists = await asyncio.gather(*[
                    upload_parts(client, f, info["urls"], self._reporter(i))
                    for i, (f, info) in enumerate(zip(self.files, upload_urls))
                ])

                self.state = UploadState.COMPLETING
                result = await self._post(client, "/upload/complete", {
                    "uploads": [
                        {
                            "key": info["key"],
                            "uploadId": info["uploadId"],
                            "fileName": f.file_name,
                            "fileSize": f.file_size,
                            "mimeType": f.mime_type,
                            "name": name,
                            "parts": parts,
                        }
                        for f, info, parts in zip(self.files, upload_urls, part_lists)
                    ],
                    "name": name,
                    "manifesto": manifesto or "",
                    "disableComments": disable_comments,
                    "unlisted": unlisted,
                    "anonymous": anonymous if self.token else True,
                })
        except Exception:
            self.state = UploadState.FAILED
            raise

        self.state = UploadState.DONE
        return result


def main():
    """CLI for the chunked uploader."""
    if len(sys.argv) < 2:
        print("Usage: feednana-upload <file_path> [<file_path> ...]")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    uploader = FeednanaUploader(
        token=os.getenv("FEEDNANA_TOKEN"),
        on_progress=lambda name, pct: logger.info(f"{name}: {pct:.1f}%"),
    )
    for path in sys.argv[1:]:
        uploader.add_path(path)

    try:
        result = asyncio.run(uploader.upload_batch(name=os.getenv("FEEDNANA_TITLE")))
    except Exception as e:
        logger.error(f"Upload failed: {e}")
        sys.exit(1)
    print(f"{uploader.api_url}{redirect_path(result)}")


if __name__ == "__main__":
    main()
