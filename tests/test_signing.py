from __future__ import annotations

import hmac
from hashlib import sha256

import pytest

from storefront.core.errors import AuthError
from storefront.core.signing import build_manifest, parse_signature_header, sign_request, verify_signature

SECRET = "s3cret"


def test_manifest_format_lowercases_id():
    assert build_manifest("ABC123", "req-1", "1700000000") == "id:abc123;request-id:req-1;ts:1700000000;"


def test_sign_and_verify_ok():
    header, ts = sign_request(SECRET, "123456", "req-1", ts="1700000000")
    expected = hmac.new(SECRET.encode(), b"id:123456;request-id:req-1;ts:1700000000;", sha256).hexdigest()

    assert header == f"ts=1700000000,v1={expected}"
    assert verify_signature(SECRET, header, "req-1", "123456").ts == ts


def test_header_parsing_tolerates_spacing_and_order():
    header, _ = sign_request(SECRET, "1", "r", ts="10")
    v1 = header.split("v1=")[1]
    parsed = parse_signature_header(f" v1={v1} , ts=10 ")
    assert parsed.ts == "10"
    assert parsed.v1 == v1


@pytest.mark.parametrize(
    "secret,header,request_id,resource_id,reason",
    [
        (None, "ts=1,v1=ab", "r", "1", "secret_not_configured"),
        (SECRET, None, "r", "1", "missing_signature"),
        (SECRET, "garbage", "r", "1", "invalid_signature_format"),
        (SECRET, "ts=1", "r", "1", "invalid_signature_format"),
        (SECRET, "ts=1,v1=ab", None, "1", "missing_request_id"),
        (SECRET, "ts=1,v1=ab", "r", None, "missing_resource_id"),
        (SECRET, "ts=1,v1=ab", "r", "1", "signature_mismatch"),
    ],
)
def test_verify_rejections(secret, header, request_id, resource_id, reason):
    with pytest.raises(AuthError) as excinfo:
        verify_signature(secret, header, request_id, resource_id)
    assert excinfo.value.details["reason"] == reason
    assert excinfo.value.status_code == 401


def test_verify_fails_when_any_manifest_part_is_tampered():
    header, _ = sign_request(SECRET, "123", "req-1", ts="100")

    with pytest.raises(AuthError):
        verify_signature(SECRET, header, "req-2", "123")
    with pytest.raises(AuthError):
        verify_signature(SECRET, header, "req-1", "124")
    with pytest.raises(AuthError):
        verify_signature("other-secret", header, "req-1", "123")


def test_timestamp_window_is_enforced_only_when_configured():
    header, _ = sign_request(SECRET, "123", "req-1", ts="1700000000")

    assert verify_signature(SECRET, header, "req-1", "123", tolerance_seconds=300, now=1700000120).ts == "1700000000"
    assert verify_signature(SECRET, header, "req-1", "123", now=1800000000).ts == "1700000000"
    with pytest.raises(AuthError) as excinfo:
        verify_signature(SECRET, header, "req-1", "123", tolerance_seconds=300, now=1700000301)
    assert excinfo.value.details["reason"] == "stale_signature"


def test_millisecond_timestamps_are_accepted_in_the_window():
    header, _ = sign_request(SECRET, "123", "req-1", ts="1700000000500")

    assert verify_signature(SECRET, header, "req-1", "123", tolerance_seconds=60, now=1700000010).v1
