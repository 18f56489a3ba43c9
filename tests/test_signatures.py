"""
Webhook 签名校验测试
"""
from sf_core.utils.signatures import compute_signature, sign_payload, verify_webhook_signature

SECRET = "whsec_abc"
BODY = b'{"id":"evt_1","type":"checkout.session.completed"}'


def test_valid_signature():
    header = sign_payload(BODY, SECRET, timestamp=1_700_000_000)
    assert verify_webhook_signature(BODY, header, SECRET, now=1_700_000_010)


def test_tampered_body_rejected():
    header = sign_payload(BODY, SECRET, timestamp=1_700_000_000)
    assert not verify_webhook_signature(BODY + b" ", header, SECRET, now=1_700_000_000)


def test_wrong_secret_rejected():
    header = sign_payload(BODY, "whsec_other", timestamp=1_700_000_000)
    assert not verify_webhook_signature(BODY, header, SECRET, now=1_700_000_000)


def test_stale_timestamp_rejected():
    header = sign_payload(BODY, SECRET, timestamp=1_700_000_000)
    assert not verify_webhook_signature(BODY, header, SECRET, tolerance=300, now=1_700_000_301)


def test_any_matching_v1_entry_accepted():
    signature = compute_signature(BODY, 1_700_000_000, SECRET)
    header = f"t=1700000000,v1=deadbeef,v1={signature}"
    assert verify_webhook_signature(BODY, header, SECRET, now=1_700_000_000)


def test_malformed_headers_rejected():
    for header in (None, "", "garbage", "t=abc,v1=00", "t=1700000000", "v1=00"):
        assert not verify_webhook_signature(BODY, header, SECRET, now=1_700_000_000)


def test_missing_secret_rejected():
    header = sign_payload(BODY, SECRET, timestamp=1_700_000_000)
    assert not verify_webhook_signature(BODY, header, None, now=1_700_000_000)
