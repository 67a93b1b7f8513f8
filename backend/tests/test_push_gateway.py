"""Tests for the Expo push gateway client."""

import json
import time

import httpx
import pytest

from stride_push.errors import GatewayError
from stride_push.integrations.push_gateway import ExpoPushClient, PushMessage, Receipt

URL = "https://push.test/send"


def _client(handler, **kwargs) -> ExpoPushClient:
    return ExpoPushClient(url=URL, access_token=kwargs.pop("access_token", ""), transport=httpx.MockTransport(handler), **kwargs)


def _messages(n: int) -> list[PushMessage]:
    return [
        PushMessage(device_token=f"ExponentPushToken[{i}]", title=f"T{i}", body=f"B{i}", data={"i": i}, channel="social")
        for i in range(n)
    ]


class TestSend:
    def test_posts_whole_batch_as_json_array_in_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "a"}, {"status": "ok", "id": "b"}]})

        receipts = _client(handler).send(_messages(2))

        assert seen["method"] == "POST"
        assert seen["url"] == URL
        assert seen["body"] == [
            {"to": "ExponentPushToken[0]", "title": "T0", "body": "B0", "data": {"i": 0}, "channelId": "social"},
            {"to": "ExponentPushToken[1]", "title": "T1", "body": "B1", "data": {"i": 1}, "channelId": "social"},
        ]
        assert [r.id for r in receipts] == ["a", "b"]
        assert all(r.ok for r in receipts)

    def test_parses_error_receipts(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"status": "error", "message": "not registered", "details": {"error": "DeviceNotRegistered"}},
                        {"status": "ok", "id": "x"},
                    ]
                },
            )

        receipts = _client(handler).send(_messages(2))
        assert not receipts[0].ok
        assert receipts[0].error_message == "not registered"
        assert receipts[0].details == {"error": "DeviceNotRegistered"}
        assert receipts[1].ok

    def test_does_not_pad_short_receipt_list(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"status": "ok"}]})

        receipts = _client(handler).send(_messages(3))
        assert len(receipts) == 1

    def test_empty_batch_makes_no_request(self):
        def handler(request):
            raise AssertionError("should not be called")

        assert _client(handler).send([]) == []

    def test_sends_bearer_token_when_configured(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["accept"] = request.headers.get("Accept")
            return httpx.Response(200, json={"data": [{"status": "ok"}]})

        _client(handler, access_token="secret").send(_messages(1))
        assert seen["auth"] == "Bearer secret"
        assert seen["accept"] == "application/json"

    def test_no_authorization_header_without_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"data": [{"status": "ok"}]})

        _client(handler).send(_messages(1))
        assert seen["auth"] is None


class TestFailures:
    def test_non_2xx_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(GatewayError, match="503"):
            _client(handler).send(_messages(2))

    def test_malformed_json_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>", headers={"Content-Type": "text/html"})

        with pytest.raises(GatewayError, match="Malformed JSON"):
            _client(handler).send(_messages(1))

    def test_missing_data_array_raises_gateway_error(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"code": "VALIDATION_ERROR"}]})

        with pytest.raises(GatewayError, match="No receipts"):
            _client(handler).send(_messages(1))

    def test_network_error_raises_gateway_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError, match="request failed"):
            _client(handler).send(_messages(1))

    def test_timeout_raises_gateway_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(GatewayError, match="timed out"):
            _client(handler).send(_messages(1))

    def test_trickling_response_hits_total_deadline(self):
        def trickle():
            for part in (b'{"data": [', b'{"status": ', b'"ok"}', b"]}"):
                time.sleep(0.05)
                yield part

        def handler(request):
            return httpx.Response(200, content=trickle())

        with pytest.raises(GatewayError, match="timed out"):
            _client(handler, timeout=0.1).send(_messages(1))

    def test_streamed_response_within_deadline(self):
        def handler(request):
            return httpx.Response(200, content=iter([b'{"data": ', b'[{"status": "ok", "id": "z"}]}']))

        receipts = _client(handler, timeout=5).send(_messages(1))
        assert [r.id for r in receipts] == ["z"]


class TestReceipt:
    def test_non_dict_receipt_is_an_error(self):
        receipt = Receipt.from_wire("garbage")
        assert not receipt.ok
        assert receipt.error_message == "Malformed receipt"

    def test_error_message_falls_back_to_details(self):
        receipt = Receipt.from_wire({"status": "error", "details": {"error": "MessageRateExceeded"}})
        assert receipt.error_message == "MessageRateExceeded"

    def test_error_message_default(self):
        assert Receipt.from_wire({"status": "error"}).error_message == "Unknown error"

    def test_missing_status_is_not_ok(self):
        assert not Receipt.from_wire({"id": "abc"}).ok
