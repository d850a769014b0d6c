from __future__ import annotations

import requests

from conftest import RecordingSink, sync_dispatch
from fitzone_notify.notifications.display import (
    APP_NAME,
    CallbackDisplaySink,
    DesktopDisplaySink,
    FanOutDisplaySink,
    LogDisplaySink,
    WebhookDisplaySink,
    default_display_sink,
)


class PostRecorder:
    def __init__(self, status_code=200, error=None):
        self.posts = []
        self.status_code = status_code
        self.error = error

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


def test_fan_out_reaches_every_sink_even_if_one_fails():
    class Broken:
        def show(self, title, message):
            raise RuntimeError("boom")

    first, last = RecordingSink(), RecordingSink()
    FanOutDisplaySink([first, Broken(), last], dispatch=sync_dispatch).show("T", "M")
    assert first.shown == [("T", "M")]
    assert last.shown == [("T", "M")]


def test_callback_sink():
    calls = []
    CallbackDisplaySink(lambda t, m: calls.append((t, m))).show("Title", "Body")
    assert calls == [("Title", "Body")]


def test_log_sink_logs(caplog):
    with caplog.at_level("INFO"):
        LogDisplaySink().show("Time to go!", "Your group class starts in 30 minutes")
    assert "Time to go!" in caplog.text


def test_desktop_sink_respects_toggle(monkeypatch):
    monkeypatch.setenv("NOTIFY_LOCAL_OS", "off")
    assert DesktopDisplaySink.enabled() is False
    assert DesktopDisplaySink().send("T", "M") is False
    monkeypatch.delenv("NOTIFY_LOCAL_OS")
    assert DesktopDisplaySink.enabled() is True


class TestWebhookSink:
    def test_unconfigured_sends_nothing(self, monkeypatch):
        for var in ("NOTIFY_WEBHOOK_URL", "NOTIFY_NTFY_TOPIC"):
            monkeypatch.delenv(var, raising=False)
        session = PostRecorder()
        sink = WebhookDisplaySink(session=session)
        assert not sink.configured
        assert sink.send("T", "M") is False
        assert session.posts == []

    def test_generic_webhook_posts_json(self):
        session = PostRecorder()
        sink = WebhookDisplaySink(url="https://hooks.example.com/fz", token="s3cret", session=session)
        assert sink.send("Reservation reminder", "Tomorrow at 09:00") is True
        url, kwargs = session.posts[0]
        assert url == "https://hooks.example.com/fz"
        assert kwargs["json"] == {"app": APP_NAME, "title": "Reservation reminder", "message": "Tomorrow at 09:00"}
        assert kwargs["headers"]["Authorization"] == "Bearer s3cret"

    def test_ntfy_topic_from_env(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_WEBHOOK_URL", raising=False)
        monkeypatch.delenv("NOTIFY_NTFY_BASE_URL", raising=False)
        monkeypatch.setenv("NOTIFY_NTFY_TOPIC", "/fitzone-me/")
        session = PostRecorder()
        sink = WebhookDisplaySink(token="", session=session)
        assert sink.url == "https://ntfy.sh/fitzone-me"
        sink.show("Time to go!", "Starts in 30 minutes")
        url, kwargs = session.posts[0]
        assert kwargs["data"] == "Starts in 30 minutes".encode("utf-8")
        assert kwargs["headers"]["Title"] == "Time to go!"
        assert "Authorization" not in kwargs["headers"]

    def test_failures_are_swallowed(self):
        failing = PostRecorder(error=requests.ConnectionError("offline"))
        assert WebhookDisplaySink(url="https://hooks.example.com/x", session=failing).send("T", "M") is False
        rejected = PostRecorder(status_code=500)
        assert WebhookDisplaySink(url="https://hooks.example.com/x", session=rejected).send("T", "M") is False


def test_default_sink_always_logs(monkeypatch):
    monkeypatch.setenv("NOTIFY_LOCAL_OS", "0")
    for var in ("NOTIFY_WEBHOOK_URL", "NOTIFY_NTFY_TOPIC"):
        monkeypatch.delenv(var, raising=False)
    sink = default_display_sink()
    assert [type(s) for s in sink.sinks] == [LogDisplaySink]
