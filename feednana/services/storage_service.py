# services/storage_service.py
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
import logging
from typing import Iterable, List, Optional

from feednana.config import Settings, get_settings
from feednana.exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageService:
    """S3 compatible object storage: multipart sessions, presigned part URLs, public URLs."""

    def __init__(self, settings: Optional[Settings] = None, s3_client=None):
        self.settings = settings or get_settings()
        self.bucket_name = self.settings.storage_bucket
        self.s3_client = s3_client or boto3.client(
            "s3",
            endpoint_url=self.settings.storage_endpoint,
            region_name=self.settings.storage_region,
            aws_access_key_id=self.settings.storage_access_key,
            aws_secret_access_key=self.settings.storage_secret_key,
            config=Config(signature_version="s3v4"),
        )

    def create_multipart_upload(self, key: str, content_type: str) -> str:
        try:
            response = self.s3_client.create_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to create multipart upload for {key}: {e}") from e

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("Failed to create multipart upload")
        return upload_id

    def get_presigned_upload_url(self, key: str, upload_id: str, part_number: int) -> str:
        if part_number < 1:
            raise StorageError(f"Part numbers start at 1, got {part_number}")
        try:
            return self.s3_client.generate_presigned_url(
                "upload_part",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": key,
                    "UploadId": upload_id,
                    "PartNumber": part_number,
                },
                ExpiresIn=self.settings.presigned_url_ttl,
                HttpMethod="PUT",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to presign part {part_number} of {key}: {e}") from e

    def complete_multipart_upload(self, key: str, upload_id: str, parts: Iterable[dict]) -> dict:
        # Backend expects ascending PartNumber with no gaps
        sorted_parts = sorted(parts, key=lambda x: x["PartNumber"])
        numbers = [p["PartNumber"] for p in sorted_parts]
        if not numbers or numbers != list(range(1, len(numbers) + 1)):
            raise StorageError(f"Parts for {key} must be contiguous from 1, got {numbers}")

        try:
            return self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": sorted_parts},
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to complete multipart upload for {key}: {e}") from e

    def abort_multipart_upload(self, key: str, upload_id: str):
        try:
            self.s3_client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to abort multipart upload {upload_id}: {e}") from e

    def list_multipart_uploads(self, prefix: str = "") -> List[dict]:
        try:
            response = self.s3_client.list_multipart_uploads(
                Bucket=self.bucket_name,
                Prefix=prefix,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to list multipart uploads: {e}") from e
        return response.get("Uploads", [])

    def upload_file(self, key: str, body: bytes, content_type: str):
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e

    def download_file(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to download {key}: {e}") from e

    def get_file_url(self, key: str) -> str:
        return f"{self.settings.file_cdn_url.rstrip('/')}/{key}"

    def delete_file(self, key: str):
        """Best effort; cleanup paths must not fail because of it."""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete {key}: {e}")
