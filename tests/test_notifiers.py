"""
Notifier tests.
Tests for desktop and sound delivery and the dispatcher.
"""

import asyncio
import io
import pytest
from unittest.mock import Mock, patch

import requests

from finnotify.database.models import Priority
from finnotify.notifiers.base import (
    DeliveryChannel,
    DeliveryRequest,
    NotificationResult,
    NotifierFactory,
)
from finnotify.notifiers.desktop import DesktopNotifier
from finnotify.notifiers.dispatcher import DeliveryDispatcher, DeliveryStream
from finnotify.notifiers.gate import dismiss_after
from finnotify.notifiers.sound import SoundNotifier


@pytest.fixture
def desktop_request(make_notification):
    """Medium priority desktop request."""
    return DeliveryRequest(
        notification=make_notification(actions=["view_budget"]),
        channel=DeliveryChannel.DESKTOP,
        dismiss_after=30,
    )


@pytest.fixture
def sound_request(make_notification):
    return DeliveryRequest(notification=make_notification(), channel=DeliveryChannel.SOUND)


class TestNotificationResult:
    """Test NotificationResult model."""

    def test_success_result(self):
        """Should create success result."""
        result = NotificationResult(success=True, channel="desktop")
        assert result.success is True
        assert result.error is None

    def test_failure_result(self):
        """Should create failure result with error."""
        result = NotificationResult(success=False, channel="sound", error="closed")
        assert result.success is False
        assert result.error == "closed"


class TestDesktopNotifier:
    """Test desktop relay notifications."""

    @pytest.fixture
    def notifier(self):
        """Create desktop notifier."""
        return DesktopNotifier(webhook_url="https://ntfy.example.com/money")

    def test_send_notification_success(self, notifier, desktop_request):
        """Should send notification successfully."""
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 200
            mock_post.return_value.ok = True

            result = notifier.send(desktop_request)

        assert result.success is True
        assert result.channel == "desktop"
        mock_post.assert_called_once()
        assert mock_post.call_args.kwargs["timeout"] == 10

    def test_send_notification_failure(self, notifier, desktop_request):
        """Should handle notification failure."""
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 400
            mock_post.return_value.ok = False
            mock_post.return_value.text = "Bad Request"

            result = notifier.send(desktop_request)

        assert result.success is False
        assert "400" in result.error

    def test_connection_error(self, notifier, desktop_request):
        """Should report connection errors without raising."""
        with patch("requests.post", side_effect=requests.exceptions.ConnectionError("down")):
            result = notifier.send(desktop_request)

        assert result.success is False
        assert "Connection error" in result.error

    def test_missing_url(self, desktop_request):
        """Should fail without a relay URL."""
        with patch("requests.post") as mock_post:
            result = DesktopNotifier(webhook_url=None).send(desktop_request)

        assert result.success is False
        mock_post.assert_not_called()

    def test_payload(self, notifier, desktop_request):
        """Should carry title, body, tag, urgency and auto-dismiss."""
        payload = notifier._create_payload(desktop_request)

        notification = desktop_request.notification
        assert payload["title"] == "Money Manager"
        assert payload["heading"] == notification.title
        assert payload["body"] == notification.message
        assert payload["tag"] == notification.id
        assert payload["category"] == "budget"
        assert payload["urgency"] == 3
        assert payload["timeout"] == 30
        assert payload["require_interaction"] is False
        assert payload["actions"] == ["view_budget"]

    def test_sticky_payload_for_high_priority(self, notifier, make_notification):
        """Should require interaction when there is no auto-dismiss."""
        request = DeliveryRequest(
            notification=make_notification(priority=Priority.HIGH),
            channel=DeliveryChannel.DESKTOP,
        )
        payload = notifier._create_payload(request)

        assert payload["urgency"] == 4
        assert payload["require_interaction"] is True
        assert payload["timeout"] is None

    def test_critical_payload_auto_dismisses(self, notifier, make_notification):
        """Should close a critical pop-up on its own after 30 seconds."""
        request = DeliveryRequest(
            notification=make_notification(priority=Priority.CRITICAL),
            channel=DeliveryChannel.DESKTOP,
            dismiss_after=dismiss_after(Priority.CRITICAL),
        )
        payload = notifier._create_payload(request)

        assert payload["urgency"] == 5
        assert payload["require_interaction"] is False
        assert payload["timeout"] == 30

    def test_rate_limit_handling(self, notifier, desktop_request):
        """Should retry once after the relay's Retry-After."""
        rate_limit_response = Mock()
        rate_limit_response.status_code = 429
        rate_limit_response.ok = False
        rate_limit_response.headers = {"Retry-After": "2"}

        success_response = Mock()
        success_response.status_code = 200
        success_response.ok = True

        with patch("requests.post") as mock_post, patch("time.sleep") as mock_sleep:
            mock_post.side_effect = [rate_limit_response, success_response]

            result = notifier.send(desktop_request)

        assert result.success is True
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(2.0)

    def test_rate_limit_with_http_date(self, notifier, desktop_request):
        """Should wait one second when Retry-After is an HTTP date."""
        rate_limit_response = Mock()
        rate_limit_response.status_code = 429
        rate_limit_response.ok = False
        rate_limit_response.headers = {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}

        success_response = Mock()
        success_response.status_code = 200
        success_response.ok = True

        with patch("requests.post") as mock_post, patch("time.sleep") as mock_sleep:
            mock_post.side_effect = [rate_limit_response, success_response]

            result = notifier.send(desktop_request)

        assert result.success is True
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_rate_limit_without_header(self, notifier, desktop_request):
        """Should wait one second when Retry-After is missing."""
        rate_limit_response = Mock()
        rate_limit_response.status_code = 429
        rate_limit_response.ok = False
        rate_limit_response.headers = {}

        with patch("requests.post") as mock_post, patch("time.sleep") as mock_sleep:
            mock_post.return_value = rate_limit_response

            result = notifier.send(desktop_request)

        assert result.success is False
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_send_batch(self, notifier, desktop_request):
        """Should send multiple requests."""
        with patch("requests.post") as mock_post:
            mock_post.return_value.status_code = 200
            mock_post.return_value.ok = True

            results = notifier.send_batch([desktop_request, desktop_request])

        assert len(results) == 2
        assert all(r.success for r in results)


class TestSoundNotifier:
    """Test the audible alert."""

    def test_rings_bell(self, sound_request):
        """Should write the bell character."""
        stream = io.StringIO()
        result = SoundNotifier(stream=stream).send(sound_request)

        assert result.success is True
        assert stream.getvalue() == "\a"

    def test_closed_stream(self, sound_request):
        """Should report a closed stream."""
        stream = io.StringIO()
        stream.close()
        result = SoundNotifier(stream=stream).send(sound_request)

        assert result.success is False
        assert result.channel == "sound"


class TestNotifierFactory:
    """Test notifier creation from configuration."""

    def test_create_desktop(self):
        """Should create a configured desktop notifier."""
        notifier = NotifierFactory.create(
            {"type": "desktop", "webhook_url": "https://ntfy.example.com/x", "timeout_seconds": 3}
        )
        assert isinstance(notifier, DesktopNotifier)
        assert notifier.timeout == 3

    def test_create_sound(self):
        """Should create a sound notifier."""
        assert isinstance(NotifierFactory.create({"type": "sound"}), SoundNotifier)

    def test_unknown_type(self):
        """Should reject unknown notifier types."""
        with pytest.raises(ValueError):
            NotifierFactory.create({"type": "pager"})


class TestDeliveryDispatcher:
    """Test routing requests to channel notifiers."""

    def test_routes_by_channel(self, desktop_request, sound_request):
        """Should use the notifier registered for each channel."""
        stream = io.StringIO()
        dispatcher = DeliveryDispatcher(
            [DesktopNotifier("https://ntfy.example.com/x"), SoundNotifier(stream=stream)]
        )

        with patch("requests.post") as mock_post:
            mock_post.return_value.ok = True
            desktop_result = dispatcher.dispatch(desktop_request)
        sound_result = dispatcher.dispatch(sound_request)

        assert desktop_result.success and sound_result.success
        assert stream.getvalue() == "\a"

    def test_missing_channel(self, desktop_request, caplog):
        """Should fail and log when no notifier serves the channel."""
        dispatcher = DeliveryDispatcher([SoundNotifier(stream=io.StringIO())])

        result = dispatcher.dispatch(desktop_request)

        assert result.success is False
        assert "desktop delivery failed" in caplog.text

    def test_run_until_stream_closes(self, sound_request):
        """Should deliver every queued request until the stream ends."""
        stream = io.StringIO()
        dispatcher = DeliveryDispatcher([SoundNotifier(stream=stream)])

        async def scenario():
            requests_stream = DeliveryStream()
            requests_stream.push(sound_request)
            requests_stream.push(sound_request)
            requests_stream.close()
            return await dispatcher.run(requests_stream)

        assert asyncio.run(scenario()) == 2
        assert stream.getvalue() == "\a\a"

    def test_notifier_error_does_not_stop_run(self, desktop_request, sound_request, caplog):
        """Should count a raising notifier as failed and keep delivering."""
        broken = Mock()
        broken.channel = DeliveryChannel.DESKTOP
        broken.send.side_effect = ValueError("could not convert string to float")
        stream = io.StringIO()
        dispatcher = DeliveryDispatcher([broken, SoundNotifier(stream=stream)])

        async def scenario():
            requests_stream = DeliveryStream()
            requests_stream.push(desktop_request)
            requests_stream.push(sound_request)
            requests_stream.close()
            return await dispatcher.run(requests_stream)

        assert asyncio.run(scenario()) == 1
        assert stream.getvalue() == "\a"
        assert "desktop delivery failed" in caplog.text


class TestDeliveryStream:
    """Test the per-consumer request stream."""

    def test_drain(self, sound_request):
        """Should return queued requests without waiting."""
        stream = DeliveryStream()
        stream.push(sound_request)

        assert stream.drain() == [sound_request]
        assert stream.drain() == []

    def test_closed_stream_ignores_pushes(self, sound_request):
        """Should drop requests after close."""
        closed = []
        stream = DeliveryStream(on_close=closed.append)
        stream.close()
        stream.push(sound_request)

        assert stream.drain() == []
        assert closed == [stream]
