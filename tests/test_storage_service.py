from urllib.parse import parse_qs, urlparse

import boto3
import pytest
from botocore.config import Config
from botocore.stub import ANY, Stubber

from feednana.exceptions import StorageError
from feednana.services.storage_service import StorageService


@pytest.fixture
def s3_client(settings):
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key,
        aws_secret_access_key=settings.storage_secret_key,
        config=Config(signature_version="s3v4"),
    )


@pytest.fixture
def gateway(settings, s3_client):
    return StorageService(settings, s3_client=s3_client)


def test_create_multipart_upload_returns_upload_id(gateway, s3_client):
    with Stubber(s3_client) as stub:
        stub.add_response(
            "create_multipart_upload",
            {"UploadId": "abc123", "Bucket": "feednana-test", "Key": "files/x.png"},
            {"Bucket": "feednana-test", "Key": "files/x.png", "ContentType": "image/png"},
        )
        assert gateway.create_multipart_upload("files/x.png", "image/png") == "abc123"


def test_create_multipart_upload_propagates_backend_error(gateway, s3_client):
    with Stubber(s3_client) as stub:
        stub.add_client_error("create_multipart_upload", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError):
            gateway.create_multipart_upload("files/x.png", "image/png")


def test_presigned_url_is_a_put_for_that_part(gateway):
    url = gateway.get_presigned_upload_url("files/abc.mp4", "upload-1", 3)
    first = gateway.get_presigned_upload_url("files/abc.mp4", "upload-1", 1)

    query = parse_qs(urlparse(url).query)
    assert urlparse(url).path.endswith("/files/abc.mp4")
    assert query["partNumber"] == ["3"]
    assert query["uploadId"] == ["upload-1"]
    assert "X-Amz-Signature" in query
    assert parse_qs(urlparse(first).query)["partNumber"] == ["1"]


def test_presigned_url_rejects_part_zero(gateway):
    with pytest.raises(StorageError):
        gateway.get_presigned_upload_url("files/abc.mp4", "upload-1", 0)


def test_complete_sorts_parts_before_calling_backend(gateway, s3_client):
    parts = [{"ETag": '"b"', "PartNumber": 2}, {"ETag": '"a"', "PartNumber": 1}]
    with Stubber(s3_client) as stub:
        stub.add_response(
            "complete_multipart_upload",
            {"Location": "https://storage.test/files/x.png"},
            {
                "Bucket": "feednana-test",
                "Key": "files/x.png",
                "UploadId": "upload-1",
                "MultipartUpload": {"Parts": [{"ETag": '"a"', "PartNumber": 1}, {"ETag": '"b"', "PartNumber": 2}]},
            },
        )
        gateway.complete_multipart_upload("files/x.png", "upload-1", parts)


def test_complete_rejects_missing_part_without_calling_backend(gateway, s3_client):
    parts = [{"ETag": '"a"', "PartNumber": 1}, {"ETag": '"c"', "PartNumber": 3}]
    with Stubber(s3_client):
        with pytest.raises(StorageError, match="contiguous"):
            gateway.complete_multipart_upload("files/x.png", "upload-1", parts)


def test_complete_surfaces_mismatched_upload_id(gateway, s3_client):
    with Stubber(s3_client) as stub:
        stub.add_client_error("complete_multipart_upload", service_error_code="NoSuchUpload", http_status_code=404)
        with pytest.raises(StorageError, match="NoSuchUpload"):
            gateway.complete_multipart_upload("files/x.png", "wrong-id", [{"ETag": '"a"', "PartNumber": 1}])


def test_get_file_url_is_plain_composition(gateway):
    assert gateway.get_file_url("files/abc.png") == "https://cdn.test/files/abc.png"
    assert gateway.get_file_url("files/abc.png") == gateway.get_file_url("files/abc.png")


def test_download_file_returns_committed_bytes(gateway, s3_client):
    from io import BytesIO

    from botocore.response import StreamingBody

    payload = b"\x89PNG fake bytes"
    with Stubber(s3_client) as stub:
        stub.add_response(
            "get_object",
            {"Body": StreamingBody(BytesIO(payload), len(payload))},
            {"Bucket": "feednana-test", "Key": "files/x.png"},
        )
        assert gateway.download_file("files/x.png") == payload


def test_delete_file_swallows_backend_errors(gateway, s3_client):
    with Stubber(s3_client) as stub:
        stub.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
        gateway.delete_file("files/x.png")


def test_upload_file_sends_content_type(gateway, s3_client):
    with Stubber(s3_client) as stub:
        stub.add_response(
            "put_object",
            {"ETag": '"e"'},
            {"Bucket": "feednana-test", "Key": "thumbnails/x.png", "Body": ANY, "ContentType": "image/png"},
        )
        gateway.upload_file("thumbnails/x.png", b"png", "image/png")
