"""Signature helpers"""

import base64
import hashlib
import hmac

from enrollflow.webhook_security import (
    compute_hmac_sha256,
    constant_time_compare,
    extract_signing_key,
    sign_standard_webhook,
    verify_timestamp,
)


def test_constant_time_compare():
    assert constant_time_compare("abc", "abc")
    assert not constant_time_compare("abc", "abd")
    assert not constant_time_compare("", "")
    assert not constant_time_compare(None, "abc")


def test_compute_hmac_sha256_is_hex():
    expected = hmac.new(b"k", b"payload", hashlib.sha256).hexdigest()
    assert compute_hmac_sha256("k", b"payload") == expected


def test_whsec_secret_is_base64_decoded():
    raw_key = b"0123456789abcdef"
    assert extract_signing_key("whsec_" + base64.b64encode(raw_key).decode()) == raw_key


def test_non_base64_secret_falls_back_to_utf8():
    assert extract_signing_key("plain-secret!") == b"plain-secret!"


def test_standard_webhook_signature_format():
    secret = "whsec_" + base64.b64encode(b"key").decode()
    expected = base64.b64encode(
        hmac.new(b"key", b"msg_1.1700000000.{}", hashlib.sha256).digest()
    ).decode()
    assert sign_standard_webhook(secret, "msg_1", "1700000000", b"{}") == expected


def test_verify_timestamp_seconds():
    assert verify_timestamp("1000", max_age=300, now=1200)
    assert not verify_timestamp("1000", max_age=300, now=1301)
    assert not verify_timestamp(None)
    assert not verify_timestamp("yesterday")


def test_verify_timestamp_milliseconds():
    assert verify_timestamp("1000000", max_age=300_000, now=1200, unit=1000)
    assert not verify_timestamp("800000", max_age=300_000, now=1200, unit=1000)
