"""Unit tests for booking QR codes."""
import base64
import json
from datetime import datetime
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from common import qr
from common.errors import InvalidQRCode, Timeout, Unavailable
from common.models import BookingStatus, SlotType
from common.qr import (
    build_qr_payload,
    fetch_qr_image,
    parse_qr_payload,
    qr_image_url,
    render_qr_data_uri,
    verify_scan,
)

START = datetime(2026, 3, 2, 10, 0)
END = datetime(2026, 3, 2, 12, 0)


def make_booking(**overrides):
    values = dict(
        id="b-1",
        slot_id="s-1",
        slot_name="A-1",
        slot_type=SlotType.NORMAL,
        start_time=START,
        end_time=END,
        user_id="u-1",
        user_name="Driver",
        status=BookingStatus.ACTIVE,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestPayload:
    """Test payload encoding."""

    def test_payload_uses_camel_case_keys(self):
        payload = json.loads(build_qr_payload(make_booking()).to_json())

        assert payload["action"] == "book"
        assert payload["bookingId"] == "b-1"
        assert payload["slotName"] == "A-1"
        assert payload["slotType"] == "normal"
        assert payload["userName"] == "Driver"
        assert payload["startTime"].startswith("2026-03-02T10:00")

    def test_image_url_carries_size_and_data(self):
        payload = build_qr_payload(make_booking())
        url = qr_image_url("https://qr.example.com/create/", payload, size=300)

        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://qr.example.com/create/?")
        assert query["size"] == ["300x300"]
        assert json.loads(query["data"][0])["bookingId"] == "b-1"

    def test_render_data_uri_is_png(self):
        uri = render_qr_data_uri(build_qr_payload(make_booking()))

        prefix = "data:image/png;base64,"
        assert uri.startswith(prefix)
        assert base64.b64decode(uri[len(prefix):]).startswith(b"\x89PNG")


class TestParse:
    """Test decoding scanned text."""

    def test_parse_valid_payload(self):
        text = build_qr_payload(make_booking()).to_json()

        payload = parse_qr_payload(text)

        assert payload.booking_id == "b-1"
        assert payload.start_time == START

    @pytest.mark.parametrize(
        "text",
        [
            "not json",
            "[1, 2]",
            json.dumps({"action": "pay", "startTime": "x", "endTime": "y"}),
            json.dumps({"action": "book", "bookingId": "b-1"}),
            json.dumps({"action": "book", "startTime": "2026-03-02T10:00:00", "endTime": "2026-03-02T12:00:00"}),
        ],
    )
    def test_parse_rejects_foreign_codes(self, text):
        with pytest.raises(InvalidQRCode):
            parse_qr_payload(text)


class TestVerifyScan:
    """Test scan verification against the stored booking."""

    def _payload(self):
        return build_qr_payload(make_booking())

    def test_active_booking_in_effect(self):
        assert verify_scan(self._payload(), make_booking(), datetime(2026, 3, 2, 11, 0)) == (True, True, None)

    def test_active_booking_not_yet_in_effect(self):
        assert verify_scan(self._payload(), make_booking(), datetime(2026, 3, 2, 8, 0)) == (True, False, None)

    def test_missing_booking(self):
        assert verify_scan(self._payload(), None, START) == (False, False, "Booking not found")

    def test_tampered_payload(self):
        booking = make_booking(end_time=datetime(2026, 3, 2, 13, 0))

        valid, in_effect, reason = verify_scan(self._payload(), booking, START)

        assert (valid, in_effect) == (False, False)
        assert reason == "QR code does not match the booking"

    def test_cancelled_booking(self):
        booking = make_booking(status=BookingStatus.CANCELLED)

        assert verify_scan(self._payload(), booking, START) == (False, False, "Booking is cancelled")


class TestFetchImage:
    """Test QR image retrieval through the circuit breaker."""

    def test_fetch_returns_content(self, monkeypatch):
        request = httpx.Request("GET", "https://qr.example.com/")
        monkeypatch.setattr(
            qr.httpx, "get", lambda url, timeout: httpx.Response(200, content=b"PNG", request=request)
        )

        assert fetch_qr_image("https://qr.example.com/", 1.0) == b"PNG"

    def test_timeout_maps_to_timeout_error(self, monkeypatch):
        def slow(url, timeout):
            raise httpx.ConnectTimeout("too slow")

        monkeypatch.setattr(qr.httpx, "get", slow)

        with pytest.raises(Timeout):
            fetch_qr_image("https://qr.example.com/", 0.1)

    def test_server_error_maps_to_unavailable(self, monkeypatch):
        request = httpx.Request("GET", "https://qr.example.com/")
        monkeypatch.setattr(qr.httpx, "get", lambda url, timeout: httpx.Response(502, request=request))

        with pytest.raises(Unavailable):
            fetch_qr_image("https://qr.example.com/", 1.0)
