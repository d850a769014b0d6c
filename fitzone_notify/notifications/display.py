"""Display sinks: where a freshly fired reminder is shown.

A sink receives a ``(title, message)`` pair and presents it somehow; there
is no acknowledgement.  :class:`FanOutDisplaySink` pushes one pair to
several sinks on background threads so a slow webhook never holds up the
reminder monitor.
"""
from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, Iterable, List, Optional, Protocol
from urllib.parse import urlparse

import requests

from fitzone_notify.notifications.store import Dispatcher, thread_dispatch

logger = logging.getLogger(__name__)

APP_NAME = "FitZone"


class DisplaySink(Protocol):
    def show(self, title: str, message: str) -> None: ...


class LogDisplaySink:
    def show(self, title: str, message: str) -> None:
        logger.info("NOTIFY  %s | %s", title, message)


class CallbackDisplaySink:
    """Forward to any callable, e.g. a UI toast function or a Qt signal's ``emit``."""

    def __init__(self, fn: Callable[[str, str], None]) -> None:
        self._fn = fn

    def show(self, title: str, message: str) -> None:
        self._fn(title, message)


class DesktopDisplaySink:
    """Best-effort local desktop notification.

    Toggle with NOTIFY_LOCAL_OS=0 (default is enabled).
    """

    def __init__(self, app_name: str = APP_NAME, timeout: int = 8) -> None:
        self.app_name = app_name
        self.timeout = timeout

    @staticmethod
    def enabled() -> bool:
        flag = (os.getenv("NOTIFY_LOCAL_OS") or "1").strip().lower()
        return flag not in {"0", "false", "off", "no"}

    def show(self, title: str, message: str) -> None:
        self.send(title, message)

    def send(self, title: str, message: str) -> bool:
        if not self.enabled():
            return False
        title = (title or self.app_name).strip()
        body = (message or "").strip() or title

        # 1) Preferred cross-platform path if installed.
        try:
            from plyer import notification as plyer_notification

            plyer_notification.notify(
                title=title,
                message=body[:300],
                app_name=self.app_name,
                timeout=self.timeout,
            )
            return True
        except Exception as exc:
            logger.debug("plyer notification unavailable: %s", exc)

        # 2) Windows fallback via BurntToast if installed.
        if os.name == "nt":
            safe_title = title.replace('"', "'")
            safe_body = body[:350].replace('"', "'")
            ps = (
                "if (Get-Module -ListAvailable -Name BurntToast) { "
                "Import-Module BurntToast -ErrorAction SilentlyContinue; "
                f"New-BurntToastNotification -Text \"{safe_title}\", \"{safe_body}\" | Out-Null "
                "}"
            )
            try:
                subprocess.run(
                    ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", ps],
                    capture_output=True,
                    text=True,
                    timeout=5,
                )
                return True
            except (OSError, subprocess.SubprocessError) as exc:
                logger.debug("BurntToast notification failed: %s", exc)
        return False


class WebhookDisplaySink:
    """Push to a webhook, or to an ntfy topic for phone notifications.

    Configure with NOTIFY_WEBHOOK_URL (and optional NOTIFY_WEBHOOK_TOKEN),
    or NOTIFY_NTFY_TOPIC (and optional NOTIFY_NTFY_BASE_URL).
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 8.0,
    ) -> None:
        self.url = url if url is not None else self._url_from_env()
        self.token = token if token is not None else (os.getenv("NOTIFY_WEBHOOK_TOKEN") or "").strip()
        self.session = session or requests.Session()
        self.timeout = timeout

    @staticmethod
    def _url_from_env() -> str:
        url = (os.getenv("NOTIFY_WEBHOOK_URL") or "").strip()
        if not url:
            topic = (os.getenv("NOTIFY_NTFY_TOPIC") or "").strip().strip("/")
            if topic:
                base = (os.getenv("NOTIFY_NTFY_BASE_URL") or "https://ntfy.sh").strip().rstrip("/")
                url = f"{base}/{topic}"
        return url

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def show(self, title: str, message: str) -> None:
        self.send(title, message)

    def send(self, title: str, message: str) -> bool:
        if not self.url:
            return False
        headers = {}
        is_ntfy = "ntfy" in (urlparse(self.url).netloc or "").lower()
        if is_ntfy:
            data = message.encode("utf-8")
            headers["Title"] = title
            headers["Tags"] = "calendar"
            kwargs = {"data": data}
        else:
            kwargs = {"json": {"app": APP_NAME, "title": title, "message": message}}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.post(self.url, headers=headers, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return True
        except requests.RequestException as exc:
            logger.warning("Webhook notification failed: %s", exc)
            return False


class FanOutDisplaySink:
    """Show one notification on every configured sink without waiting."""

    def __init__(self, sinks: Iterable[DisplaySink], dispatch: Optional[Dispatcher] = None) -> None:
        self.sinks: List[DisplaySink] = list(sinks)
        self._dispatch = dispatch or thread_dispatch

    def show(self, title: str, message: str) -> None:
        for sink in self.sinks:
            self._dispatch(_guarded(sink, title, message))


def _guarded(sink: DisplaySink, title: str, message: str) -> Callable[[], None]:
    def _call() -> None:
        try:
            sink.show(title, message)
        except Exception:
            logger.exception("Display sink %s failed", type(sink).__name__)

    return _call


def default_display_sink() -> FanOutDisplaySink:
    """Log every reminder, and push it to the desktop/webhook when available."""
    sinks: List[DisplaySink] = [LogDisplaySink()]
    if DesktopDisplaySink.enabled():
        sinks.append(DesktopDisplaySink())
    webhook = WebhookDisplaySink()
    if webhook.configured:
        sinks.append(webhook)
    return FanOutDisplaySink(sinks)
