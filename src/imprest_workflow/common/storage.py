from __future__ import annotations

import hashlib
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from imprest_workflow.common.settings import Settings
from imprest_workflow.kernel.errors import UpstreamError


@dataclass(frozen=True)
class S3ObjectRef:
    bucket: str
    key: str

    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def parse_s3_uri(uri: str) -> S3ObjectRef:
    if not uri.startswith("s3://"):
        raise ValueError(f"unsupported uri: {uri}")
    rest = uri[len("s3://") :]
    bucket, _, key = rest.partition("/")
    if not bucket or not key:
        raise ValueError(f"invalid s3 uri: {uri}")
    return S3ObjectRef(bucket=bucket, key=key)


def make_s3_client(settings: Settings):
    endpoint = settings.s3_endpoint
    if endpoint.startswith("http://") or endpoint.startswith("https://"):
        endpoint_url = endpoint
    else:
        scheme = "https" if settings.s3_secure else "http"
        endpoint_url = f"{scheme}://{endpoint}"

    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
        config=Config(s3={"addressing_style": "path"}),
    )


def receipt_key(imprest_id: str, filename: str, data: bytes) -> str:
    safe_name = (filename or "receipt").replace("/", "_").replace("\\", "_")
    return f"imprests/{imprest_id}/{sha256_bytes(data)[:16]}-{safe_name}"


class ReceiptStore:
    """Uploads receipt files; any client failure surfaces as UpstreamError."""

    def __init__(self, settings: Settings, client=None) -> None:
        self._settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = make_s3_client(self._settings)
        return self._client

    def upload_receipt(
        self, imprest_id: str, filename: str, data: bytes, content_type: str | None = None
    ) -> S3ObjectRef:
        bucket = self._settings.s3_bucket_receipts
        key = receipt_key(imprest_id, filename, data)
        extra = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise UpstreamError(
                f"receipt upload failed: {e}",
                details={"imprest_id": imprest_id, "bucket": bucket, "key": key},
            ) from e
        return S3ObjectRef(bucket=bucket, key=key)
