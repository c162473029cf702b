"""
Unit tests for notifier adapters.

Tests cover:
- MemoryNotifier recording and filtering
- WebhookNotifier delivery via a mocked transport
- Delivery failures never propagate
- dispatch() isolating callers from a failing notifier
"""

import json
import logging

import httpx
import pytest

from timecapsule.notify import MemoryNotifier, NullNotifier, WebhookNotifier, dispatch
from timecapsule.schema import EventKind, NotificationEvent

URL = "https://hooks.example.com/timecapsule"


def _event(kind: EventKind = EventKind.CAPSULE_UNLOCKED) -> NotificationEvent:
    return NotificationEvent(kind=kind, user_id="alice", capsule_id="c1", detail={"title": "Hi"})


class TestInProcessNotifiers:
    def test_null_notifier(self) -> None:
        assert NullNotifier().notify(_event()) is None

    def test_memory_notifier(self) -> None:
        notifier = MemoryNotifier()
        notifier.notify(_event())
        notifier.notify(_event(EventKind.CAPSULE_REPORTED))
        assert [e.kind for e in notifier.events] == [EventKind.CAPSULE_UNLOCKED, EventKind.CAPSULE_REPORTED]
        assert len(notifier.of_kind(EventKind.CAPSULE_REPORTED)) == 1
        notifier.clear()
        assert notifier.events == []

    def test_events_is_a_snapshot(self) -> None:
        notifier = MemoryNotifier()
        snapshot = notifier.events
        notifier.notify(_event())
        assert snapshot == []


class TestWebhookNotifier:
    """Tests for HTTP delivery."""

    def test_posts_json(self) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        notifier = WebhookNotifier(URL, client=httpx.Client(transport=httpx.MockTransport(handler)))
        notifier.notify(_event())
        notifier.close()

        assert len(received) == 1
        request = received[0]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert request.headers["content-type"] == "application/json"
        body = json.loads(request.content)
        assert body["kind"] == "capsule.unlocked"
        assert body["capsule_id"] == "c1"
        assert body["detail"] == {"title": "Hi"}

    def test_http_error_status_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        notifier = WebhookNotifier(URL, client=httpx.Client(transport=transport))
        with caplog.at_level(logging.WARNING, logger="timecapsule.notify.webhook"):
            notifier.notify(_event())
        assert "HTTP 500" in caplog.text

    def test_transport_error_is_swallowed(self, caplog: pytest.LogCaptureFixture) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = WebhookNotifier(URL, client=httpx.Client(transport=httpx.MockTransport(handler)))
        with caplog.at_level(logging.WARNING, logger="timecapsule.notify.webhook"):
            notifier.notify(_event())
        assert "failed" in caplog.text


class TestDispatch:
    def test_delivers(self) -> None:
        notifier = MemoryNotifier()
        dispatch(notifier, _event())
        assert len(notifier.events) == 1

    def test_failure_is_logged(self, failing_notifier, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="timecapsule.notify.base"):
            dispatch(failing_notifier, _event(EventKind.USER_BANNED))
        assert failing_notifier.calls == 1
        assert "user.banned" in caplog.text
        assert "notifier down" in caplog.text
