"""Shared bootstrap logic for the notification subsystem.

Builds one :class:`NotificationSession` (stores, reminder monitor, membership
refresh loop, unified view) from the saved settings and tears it down
again at exit.
"""
from __future__ import annotations

import atexit
import logging
import sys
import threading
import traceback
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fitzone_notify import config
from fitzone_notify.data import _http
from fitzone_notify.data.membership_api import MembershipNotificationClient
from fitzone_notify.data.reservation_api import ReservationClient
from fitzone_notify.notifications.display import DisplaySink, default_display_sink
from fitzone_notify.notifications.poller import Poller
from fitzone_notify.notifications.reminder_monitor import ReminderScheduler
from fitzone_notify.notifications.store import (
    MembershipNotificationStore,
    ReservationNotificationStore,
)
from fitzone_notify.notifications.unified import UnifiedView
from fitzone_notify.storage.persistence import JsonFileStore, PersistenceLayer

_session: Optional["NotificationSession"] = None
_logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure root logging from the saved settings."""
    level = getattr(logging, config.get_log_level(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _thread_excepthook(args):
    """Log unhandled exceptions from background threads."""
    if args.exc_type is SystemExit:
        return
    _logger.error(
        "Unhandled exception in thread %s:\n%s",
        args.thread.name if args.thread else "<unknown>",
        "".join(
            traceback.format_exception(
                args.exc_type, args.exc_value, args.exc_traceback
            )
        ),
    )


class NotificationSession:
    """Everything one signed-in member's notification centre needs.

    The membership store refreshes on the same cadence as the reminder
    monitor.  Closing the session stops both loops and detaches the view;
    a fetch still in flight at that moment is allowed to finish but its
    result is thrown away.
    """

    def __init__(
        self,
        membership_store: MembershipNotificationStore,
        reservation_store: ReservationNotificationStore,
        scheduler: ReminderScheduler,
        refresh_interval: float,
    ) -> None:
        self.membership_store = membership_store
        self.reservation_store = reservation_store
        self.scheduler = scheduler
        self.view = UnifiedView(membership_store, reservation_store)
        self._refresh = Poller("membership-refresh", refresh_interval, membership_store.load, wait_first=True)
        self._closed = False

    def start(self) -> None:
        self.reservation_store.load()
        self.membership_store.load()
        self.scheduler.start()
        self._refresh.start()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.scheduler.stop()
        self._refresh.stop()
        self.view.close()
        self.membership_store.close()
        self.reservation_store.close()


def create_session(
    persistence: Optional[PersistenceLayer] = None,
    display: Optional[DisplaySink] = None,
    user_id: Optional[int] = None,
) -> NotificationSession:
    """Wire a session from the saved settings.  Nothing is started yet."""
    base_url = config.get_api_base_url()
    timeout = config.get_request_timeout()
    http = _http.build_session(config.get_access_token())
    if user_id is None:
        user_id = config.get_user_id()

    membership_store = MembershipNotificationStore(
        MembershipNotificationClient(base_url, session=http, timeout=timeout),
        user_id=user_id,
    )
    reservation_store = ReservationNotificationStore(
        persistence if persistence is not None else JsonFileStore(config.get_storage_path())
    )
    interval = config.get_poll_interval_seconds()
    scheduler = ReminderScheduler(
        ReservationClient(base_url, session=http, timeout=timeout),
        reservation_store,
        display if display is not None else default_display_sink(),
        user_id=user_id,
        interval_seconds=interval,
        tz=_configured_zone(),
    )
    return NotificationSession(membership_store, reservation_store, scheduler, interval)


def _configured_zone():
    name = config.get_time_zone()
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        _logger.warning("Unknown time_zone %r, using the local zone", name)
        return None


def bootstrap(status_callback: Optional[Callable[[str], None]] = None) -> NotificationSession:
    """Run the shared initialisation sequence and return the live session.

    Parameters
    ----------
    status_callback : callable, optional
        Called with a status string at each init stage (useful for splash
        screens).
    """
    global _session

    threading.excepthook = _thread_excepthook

    def _status(msg):
        _logger.info(msg)
        if status_callback:
            status_callback(msg)

    if _session is not None:
        return _session

    _status("Loading notification settings...")
    session = create_session()

    _status("Starting reminder monitor...")
    session.start()
    _session = session
    _logger.info("Notification session started (%.0fs polling)", session.scheduler.interval)

    atexit.register(shutdown)
    return session


def shutdown():
    """Stop background services gracefully."""
    global _session
    if _session is not None:
        _logger.info("Stopping notification session...")
        _session.close()
        _session = None
