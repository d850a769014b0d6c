from __future__ import annotations

import threading
from datetime import timedelta, timezone

import pytest

from conftest import NOW, FakeReservationSource, RecordingSink, reservation_at
from fitzone_notify.notifications.models import ReminderKind, ReservationSnapshot
from fitzone_notify.notifications.reminder_monitor import (
    DEFAULT_THRESHOLDS,
    ReminderScheduler,
    ReminderThreshold,
)
from fitzone_notify.notifications.store import ReservationNotificationStore


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def _scheduler(source, store, sink, clock=None, **kwargs):
    return ReminderScheduler(
        source,
        store,
        sink,
        user_id=7,
        now_fn=clock or Clock(),
        tz=timezone.utc,
        **kwargs,
    )


def test_reminder_fires_once_at_24_hours(reservation_store, sink):
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    scheduler = _scheduler(source, reservation_store, sink)

    created = scheduler.check()
    assert len(created) == 1
    reminder = created[0]
    assert reminder.kind is ReminderKind.REMINDER
    assert reminder.threshold == "24h"
    assert "group class" in reminder.message
    assert reminder.message == "Your group class is tomorrow at 09:00."
    assert reminder.timestamp == NOW
    assert reminder.read is False
    assert reservation_store.items() == [reminder]
    assert sink.shown == [(reminder.title, reminder.message)]
    assert scheduler.has_fired("r1", "24h")

    assert scheduler.check() == []
    assert len(reservation_store) == 1
    assert len(sink.shown) == 1


def test_late_ticks_inside_one_window_fire_once(reservation_store, sink):
    clock = Clock()
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    scheduler = _scheduler(source, reservation_store, sink, clock)

    clock.now = NOW + timedelta(minutes=6)
    assert len(scheduler.check()) == 1
    clock.now = NOW + timedelta(minutes=20)
    assert scheduler.check() == []


@pytest.mark.parametrize(
    "lead, threshold_id",
    [
        (timedelta(hours=23, minutes=31), "24h"),
        (timedelta(hours=2), "2h"),
        (timedelta(hours=1, minutes=36), "2h"),
        (timedelta(minutes=30), "30m"),
        (timedelta(minutes=16), "30m"),
    ],
)
def test_each_threshold_window(reservation_store, sink, lead, threshold_id):
    source = FakeReservationSource([reservation_at("r1", NOW + lead)])
    created = _scheduler(source, reservation_store, sink).check()
    assert [r.threshold for r in created] == [threshold_id]


@pytest.mark.parametrize(
    "lead",
    [
        timedelta(hours=25),
        timedelta(hours=23, minutes=30),
        timedelta(hours=1),
        timedelta(minutes=15),
        timedelta(minutes=-5),
    ],
)
def test_outside_every_window_fires_nothing(reservation_store, sink, lead):
    source = FakeReservationSource([reservation_at("r1", NOW + lead)])
    assert _scheduler(source, reservation_store, sink).check() == []
    assert sink.shown == []


def test_booking_walks_through_all_thresholds(reservation_store, sink):
    clock = Clock()
    start = NOW + timedelta(hours=24)
    source = FakeReservationSource([reservation_at("r1", start, "PERSONAL_TRAINING")])
    scheduler = _scheduler(source, reservation_store, sink, clock)

    fired = []
    for lead in (timedelta(hours=24), timedelta(hours=2), timedelta(minutes=30)):
        clock.now = start - lead
        fired += [r.threshold for r in scheduler.check()]
    assert fired == ["24h", "2h", "30m"]
    assert "personal training" in reservation_store.items()[0].message
    # Newest first in the store.
    assert [n.threshold for n in reservation_store.items()] == ["30m", "2h", "24h"]


def test_fetch_failure_skips_cycle(reservation_store, sink):
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    source.fail = True
    scheduler = _scheduler(source, reservation_store, sink)
    messages = []
    assert scheduler.check(progress_cb=messages.append) == []
    assert reservation_store.items() == []
    assert messages == ["Reminder monitor: reservations unavailable"]

    source.fail = False
    assert len(scheduler.check()) == 1


def test_unexpected_error_skips_cycle(reservation_store, sink):
    source = FakeReservationSource()

    def explode():
        raise RuntimeError("bug")

    source.during_fetch = explode
    assert _scheduler(source, reservation_store, sink).check() == []


def test_unparseable_reservation_is_skipped(reservation_store, sink):
    broken = ReservationSnapshot("bad", "GROUP_CLASS", "someday", "soon")
    good = reservation_at("r2", NOW + timedelta(hours=2))
    source = FakeReservationSource([broken, good])
    created = _scheduler(source, reservation_store, sink).check()
    assert [r.reservation.reservation_id for r in created] == ["r2"]


def test_stop_during_fetch_discards_result(reservation_store, sink):
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    scheduler = _scheduler(source, reservation_store, sink)
    source.during_fetch = scheduler.stop

    assert scheduler.check() == []
    assert reservation_store.items() == []
    assert sink.shown == []
    assert not scheduler.has_fired("r1", "24h")


def test_reminder_is_stored_before_it_is_shown(reservation_store):
    seen_in_store = []

    class CheckingSink:
        def show(self, title, message):
            seen_in_store.append([n.message for n in reservation_store.items()])

    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=2))])
    created = _scheduler(source, reservation_store, CheckingSink()).check()
    assert seen_in_store == [[created[0].message]]


def test_display_failure_keeps_reminder(reservation_store):
    class BrokenSink:
        def show(self, title, message):
            raise OSError("no notification daemon")

    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=2))])
    created = _scheduler(source, reservation_store, BrokenSink()).check()
    assert len(created) == 1
    assert len(reservation_store) == 1


def test_persisted_reminders_prevent_refire_after_restart(persistence, sink):
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    first_store = ReservationNotificationStore(persistence)
    assert len(_scheduler(source, first_store, sink).check()) == 1

    # A fresh process: reload the store and build a new monitor.
    second_store = ReservationNotificationStore(persistence)
    second_store.load()
    restarted = _scheduler(source, second_store, RecordingSink())
    assert restarted.has_fired("r1", "24h")
    assert restarted.check() == []
    assert len(second_store) == 1


def test_start_reseeds_from_store_loaded_later(persistence, sink):
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=24))])
    _scheduler(source, ReservationNotificationStore(persistence), sink).check()

    store = ReservationNotificationStore(persistence)
    scheduler = _scheduler(source, store, sink, interval_seconds=3600)
    assert not scheduler.has_fired("r1", "24h")
    store.load()
    scheduler.start()
    try:
        assert scheduler.has_fired("r1", "24h")
    finally:
        scheduler.stop()
    assert len(store) == 1


def test_start_runs_a_cycle_immediately(reservation_store):
    shown = threading.Event()

    class SignalSink:
        def show(self, title, message):
            shown.set()

    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=2))])
    scheduler = _scheduler(source, reservation_store, SignalSink(), interval_seconds=3600)
    scheduler.start()
    try:
        assert shown.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop()
    assert not scheduler.running
    assert len(reservation_store) == 1


def test_custom_thresholds(reservation_store, sink):
    week = ReminderThreshold("7d", 168.0, 1.0, "Next week", "Your {activity} is next week at {start}.")
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=167, minutes=30))])
    created = _scheduler(source, reservation_store, sink, thresholds=[week]).check()
    assert [(r.threshold, r.message) for r in created] == [
        ("7d", "Your group class is next week at 08:30.")
    ]


def test_default_windows_do_not_overlap():
    spans = sorted((t.hours - t.window_hours, t.hours) for t in DEFAULT_THRESHOLDS)
    for (_, upper), (lower, _) in zip(spans, spans[1:]):
        assert upper <= lower


class TestLifecycleNotices:
    def test_created(self, reservation_store, sink):
        res = reservation_at("r5", NOW + timedelta(days=3), "SPECIALIZED_SPACE")
        scheduler = _scheduler(FakeReservationSource(), reservation_store, sink)
        notice = scheduler.notify_reservation_created(res)
        assert notice.kind is ReminderKind.CONFIRMATION
        assert notice.threshold is None
        assert "specialized space" in notice.message
        assert reservation_store.items() == [notice]
        assert sink.shown == [("Reservation confirmed", notice.message)]

    def test_cancelled_and_updated(self, reservation_store, sink):
        res = reservation_at("r5", NOW + timedelta(days=3))
        scheduler = _scheduler(FakeReservationSource(), reservation_store, sink)
        cancelled = scheduler.notify_reservation_cancelled(res)
        updated = scheduler.notify_reservation_updated(res)
        assert cancelled.kind is ReminderKind.CANCELLATION
        assert updated.kind is ReminderKind.UPDATE
        assert [n.id for n in reservation_store.items()] == [updated.id, cancelled.id]

    def test_notices_do_not_block_threshold_reminders(self, reservation_store, sink):
        res = reservation_at("r1", NOW + timedelta(hours=24))
        scheduler = _scheduler(FakeReservationSource([res]), reservation_store, sink)
        scheduler.notify_reservation_created(res)
        assert len(scheduler.check()) == 1


def test_stop_after_fetch_discards_pending_reminder(reservation_store, sink):
    holder = []

    class StopWhileRendering(ReminderThreshold):
        def render(self, reservation):
            holder[0].stop()
            return super().render(reservation)

    threshold = StopWhileRendering("2h", 2.0, 0.5, "Reservation coming up", "Your {activity} is at {start}.")
    source = FakeReservationSource([reservation_at("r1", NOW + timedelta(hours=2))])
    scheduler = _scheduler(source, reservation_store, sink, thresholds=[threshold])
    holder.append(scheduler)

    assert scheduler.check() == []
    assert len(reservation_store) == 0
    assert sink.shown == []
    assert not scheduler.has_fired("r1", "2h")
