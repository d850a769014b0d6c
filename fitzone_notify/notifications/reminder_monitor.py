"""Background reservation reminder monitor.

Polls the member's upcoming reservations on a fixed cadence and, as each
booking gets close, fires one reminder per lead-time threshold (24 hours,
2 hours, 30 minutes).  Reminders are persisted into the reservation store
first and only then shown, so anything the member saw survives a reload.

Each threshold has a detection window, e.g. 24h fires when the booking is
between 23.5 and 24 hours away.  Window membership alone is not enough to
guarantee exactly-once: a late tick can land twice inside one window.  The
monitor therefore remembers every ``(reservation_id, threshold_id)`` it has
fired and never fires the same pair again.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, List, Optional, Protocol, Sequence, Set, Tuple

from fitzone_notify.notifications.display import DisplaySink
from fitzone_notify.notifications.errors import FetchFailure, ParseFailure
from fitzone_notify.notifications.models import (
    ReminderKind,
    ReservationReminder,
    ReservationSnapshot,
)
from fitzone_notify.notifications.poller import Poller
from fitzone_notify.notifications.store import ReservationNotificationStore

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300  # 5 minutes

_FiredKey = Tuple[str, str]  # (reservation_id, threshold_id)


class ReservationSource(Protocol):
    def get_upcoming(self, user_id: Optional[int] = None) -> List[ReservationSnapshot]: ...


@dataclass(frozen=True)
class ReminderThreshold:
    """A lead time before a booking at which one reminder fires."""

    id: str
    hours: float
    window_hours: float
    title: str
    template: str  # formatted with {activity} and {start}

    def matches(self, hours_until: float) -> bool:
        return self.hours - self.window_hours < hours_until <= self.hours

    def render(self, reservation: ReservationSnapshot) -> str:
        return self.template.format(
            activity=reservation.activity_name.lower(),
            start=reservation.scheduled_start_time,
        )


DEFAULT_THRESHOLDS: Tuple[ReminderThreshold, ...] = (
    ReminderThreshold(
        id="24h",
        hours=24.0,
        window_hours=0.5,
        title="Reservation reminder",
        template="Your {activity} is tomorrow at {start}.",
    ),
    ReminderThreshold(
        id="2h",
        hours=2.0,
        window_hours=0.5,
        title="Reservation coming up",
        template="Your {activity} starts in 2 hours, at {start}. Try to arrive 15 minutes early.",
    ),
    ReminderThreshold(
        id="30m",
        hours=0.5,
        window_hours=0.25,
        title="Time to go!",
        template="Your {activity} starts in 30 minutes, at {start}.",
    ),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReminderScheduler:
    """Stateful reminder engine.

    Call :meth:`start` to poll in the background (once immediately, then
    every *interval_seconds*), or :meth:`check` to run a single cycle.
    """

    def __init__(
        self,
        reservations: ReservationSource,
        store: ReservationNotificationStore,
        display: DisplaySink,
        user_id: Optional[int] = None,
        thresholds: Sequence[ReminderThreshold] = DEFAULT_THRESHOLDS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        now_fn: Optional[Callable[[], datetime]] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.reservations = reservations
        self.store = store
        self.display = display
        self.user_id = user_id
        self.thresholds = tuple(thresholds)
        self.tz = tz
        self._now = now_fn or _utc_now
        self._lock = threading.RLock()
        self._fired: Set[_FiredKey] = set()
        # Bumped by stop(); a cycle that started under an older generation
        # throws its result away.
        self._generation = 0
        self._poller = Poller("reminder-monitor", interval_seconds, self.check)
        self._seed_fired()

    # ──────────────────────────────────────────────────────────────────────
    def start(self) -> None:
        self._seed_fired()
        self._poller.start()

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
        self._poller.stop()

    @property
    def running(self) -> bool:
        return self._poller.running

    @property
    def interval(self) -> float:
        return self._poller.interval

    def has_fired(self, reservation_id: str, threshold_id: str) -> bool:
        with self._lock:
            return (str(reservation_id), threshold_id) in self._fired

    # ──────────────────────────────────────────────────────────────────────
    def check(self, progress_cb: Optional[Callable[[str], None]] = None) -> List[ReservationReminder]:
        """Fetch upcoming reservations and fire any reminders now due.

        Returns the reminders created in this cycle.  Never raises: a failed
        fetch just skips the cycle.
        """
        progress = progress_cb or (lambda _: None)
        with self._lock:
            generation = self._generation

        try:
            upcoming = self.reservations.get_upcoming(self.user_id)
        except (FetchFailure, ParseFailure) as exc:
            log.info("Reminder monitor: reservations unavailable, skipping cycle (%s)", exc)
            progress("Reminder monitor: reservations unavailable")
            return []
        except Exception:
            log.exception("Reminder monitor: reservation query failed")
            return []

        if self._stale(generation):
            log.debug("Reminder monitor stopped during fetch; discarding result")
            return []

        now = self._now()
        created: List[ReservationReminder] = []
        for reservation in upcoming:
            try:
                starts = reservation.starts_at(self.tz)
            except ParseFailure as exc:
                log.warning("Reminder monitor: %s", exc)
                continue
            hours_until = (starts - now).total_seconds() / 3600.0

            for threshold in self.thresholds:
                if not threshold.matches(hours_until):
                    continue
                key = (reservation.reservation_id, threshold.id)
                with self._lock:
                    if self._generation != generation:
                        return created
                    if key in self._fired:
                        continue
                    self._fired.add(key)

                reminder = ReservationReminder(
                    kind=ReminderKind.REMINDER,
                    title=threshold.title,
                    message=threshold.render(reservation),
                    timestamp=now,
                    reservation=reservation,
                    threshold=threshold.id,
                )
                if not self._emit(reminder, generation):
                    with self._lock:
                        self._fired.discard(key)
                    log.debug("Reminder monitor stopped mid-cycle; discarding %s", key)
                    return created
                created.append(reminder)
                progress(f"  REMINDER: {reminder.title} -- {reminder.message}")

        if created:
            log.info("Reminder monitor: %d new reminder(s)", len(created))
        else:
            log.debug("Reminder monitor: nothing due (%d upcoming)", len(upcoming))
        return created

    # ── Booking lifecycle notices ──

    def notify_reservation_created(self, reservation: ReservationSnapshot) -> ReservationReminder:
        return self._notice(
            reservation,
            ReminderKind.CONFIRMATION,
            "Reservation confirmed",
            f"Your {reservation.activity_name.lower()} is booked for "
            f"{reservation.scheduled_date} at {reservation.scheduled_start_time}.",
        )

    def notify_reservation_cancelled(self, reservation: ReservationSnapshot) -> ReservationReminder:
        return self._notice(
            reservation,
            ReminderKind.CANCELLATION,
            "Reservation cancelled",
            f"Your {reservation.activity_name.lower()} on {reservation.scheduled_date} has been cancelled.",
        )

    def notify_reservation_updated(self, reservation: ReservationSnapshot) -> ReservationReminder:
        return self._notice(
            reservation,
            ReminderKind.UPDATE,
            "Reservation updated",
            f"Your {reservation.activity_name.lower()} has been updated.",
        )

    # ──────────────────────────────────────────────────────────────────────
    def _notice(
        self,
        reservation: ReservationSnapshot,
        kind: ReminderKind,
        title: str,
        message: str,
    ) -> ReservationReminder:
        reminder = ReservationReminder(
            kind=kind,
            title=title,
            message=message,
            timestamp=self._now(),
            reservation=reservation,
        )
        self._emit(reminder)
        return reminder

    def _emit(self, reminder: ReservationReminder, generation: Optional[int] = None) -> bool:
        """Persist *reminder*, then show it.

        With a *generation*, nothing happens (and False is returned) if the
        monitor was stopped since that generation began.
        """
        # Persist first: a reload right after the toast must include it.
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self.store.add(reminder)
        try:
            self.display.show(reminder.title, reminder.message)
        except Exception:
            log.exception("Reminder monitor: display failed for %s", reminder.id)
        return True

    def _stale(self, generation: int) -> bool:
        with self._lock:
            return generation != self._generation

    def _seed_fired(self) -> None:
        """Rebuild the fired-set from reminders that are already persisted."""
        seeded = 0
        with self._lock:
            for n in self.store.items():
                if isinstance(n, ReservationReminder) and n.threshold and n.reservation is not None:
                    key = (n.reservation.reservation_id, n.threshold)
                    if key not in self._fired:
                        self._fired.add(key)
                        seeded += 1
        if seeded:
            log.debug("Reminder monitor: %d threshold(s) already fired", seeded)
