from __future__ import annotations

import boto3
import pytest
from botocore.stub import ANY, Stubber

from imprest_workflow.common.settings import Settings
from imprest_workflow.common.storage import ReceiptStore, S3ObjectRef, parse_s3_uri, receipt_key
from imprest_workflow.kernel.errors import UpstreamError


def _settings() -> Settings:
    return Settings(IMPREST_DB_DSN="sqlite://", IMPREST_S3_BUCKET_RECEIPTS="receipts-test")


def _client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def test_upload_receipt_puts_object():
    client = _client()
    store = ReceiptStore(_settings(), client=client)
    with Stubber(client) as stub:
        stub.add_response(
            "put_object",
            {},
            {"Bucket": "receipts-test", "Key": ANY, "Body": b"%PDF-1.4", "ContentType": "application/pdf"},
        )
        ref = store.upload_receipt("imp-1", "fuel.pdf", b"%PDF-1.4", "application/pdf")
        stub.assert_no_pending_responses()
    assert ref.bucket == "receipts-test"
    assert ref.key.startswith("imprests/imp-1/")
    assert ref.key.endswith("-fuel.pdf")
    assert ref.uri() == f"s3://receipts-test/{ref.key}"


def test_upload_failure_is_upstream_error():
    client = _client()
    store = ReceiptStore(_settings(), client=client)
    with Stubber(client) as stub:
        stub.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)
        with pytest.raises(UpstreamError) as ei:
            store.upload_receipt("imp-1", "fuel.pdf", b"data")
    assert ei.value.http_status == 502
    assert ei.value.details["imprest_id"] == "imp-1"


def test_receipt_key_is_content_addressed_and_path_safe():
    a = receipt_key("imp-1", "../x/y.png", b"one")
    b = receipt_key("imp-1", "../x/y.png", b"two")
    assert a != b
    assert "/" not in a.split("imprests/imp-1/", 1)[1]


def test_parse_s3_uri():
    assert parse_s3_uri("s3://bucket/a/b.pdf") == S3ObjectRef(bucket="bucket", key="a/b.pdf")
    with pytest.raises(ValueError):
        parse_s3_uri("https://bucket/a")
    with pytest.raises(ValueError):
        parse_s3_uri("s3://bucket")
