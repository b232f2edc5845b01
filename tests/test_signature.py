"""Tests for webhook signature signing and verification."""

from __future__ import annotations

import base64
import hashlib
import hmac

from line_drive_bridge.core.signature import sign, verify

BODY = b'{"destination":"U0","events":[]}'
SECRET = "channel-secret"


class TestSign:
    def test_matches_reference_hmac(self):
        expected = base64.b64encode(
            hmac.new(SECRET.encode(), BODY, hashlib.sha256).digest()
        ).decode()
        assert sign(BODY, SECRET) == expected

    def test_depends_on_exact_bytes(self):
        assert sign(BODY, SECRET) != sign(BODY + b" ", SECRET)


class TestVerify:
    def test_round_trip(self):
        assert verify(BODY, sign(BODY, SECRET), SECRET) is True

    def test_other_secret_fails(self):
        assert verify(BODY, sign(BODY, SECRET), "other-secret") is False

    def test_empty_header_fails(self):
        assert verify(BODY, "", SECRET) is False

    def test_missing_header_fails(self):
        assert verify(BODY, None, SECRET) is False

    def test_missing_secret_fails(self):
        assert verify(BODY, sign(BODY, SECRET), None) is False
        assert verify(BODY, sign(BODY, SECRET), "") is False

    def test_tampered_body_fails(self):
        assert verify(b'{"events":[{}]}', sign(BODY, SECRET), SECRET) is False

    def test_garbage_header_does_not_raise(self):
        assert verify(BODY, "not base64 at all ✓", SECRET) is False
