from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from fitzone_notify.notifications.errors import FetchFailure
from fitzone_notify.notifications.models import (
    MembershipNotification,
    NotificationCategory,
    NotificationPriority,
    ReservationSnapshot,
)
from fitzone_notify.notifications.store import (
    MembershipNotificationStore,
    ReservationNotificationStore,
)
from fitzone_notify.storage.persistence import MemoryStore

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def sync_dispatch(fn: Callable[[], None]) -> None:
    fn()


class FakeMembershipClient:
    """Stands in for MembershipNotificationClient and records every call."""

    def __init__(self, notifications: Optional[List[MembershipNotification]] = None) -> None:
        self.notifications = list(notifications or [])
        self.fail = False
        self.calls: List[tuple] = []

    def _served(self) -> List[MembershipNotification]:
        # Fresh copies each time, the way a real fetch decodes new objects.
        return [MembershipNotification.from_dict(n.to_dict()) for n in self.notifications]

    def fetch(self, user_id: int) -> List[MembershipNotification]:
        self.calls.append(("fetch", user_id))
        if self.fail:
            raise FetchFailure("backend down")
        return self._served()

    def mark_read(self, notification_id: str) -> None:
        self.calls.append(("mark_read", notification_id))

    def mark_all_read(self, user_id: int) -> None:
        self.calls.append(("mark_all_read", user_id))

    def delete(self, notification_id: str) -> None:
        self.calls.append(("delete", notification_id))

    def clear(self, user_id: int) -> None:
        self.calls.append(("clear", user_id))

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


class FakeReservationSource:
    def __init__(self, reservations: Optional[List[ReservationSnapshot]] = None) -> None:
        self.reservations = list(reservations or [])
        self.fail = False
        self.calls = 0
        self.during_fetch: Optional[Callable[[], None]] = None

    def get_upcoming(self, user_id: Optional[int] = None) -> List[ReservationSnapshot]:
        self.calls += 1
        if self.during_fetch is not None:
            self.during_fetch()
        if self.fail:
            raise FetchFailure("connection refused")
        return list(self.reservations)


class RecordingSink:
    def __init__(self) -> None:
        self.shown: List[tuple] = []

    def show(self, title: str, message: str) -> None:
        self.shown.append((title, message))


def membership_notification(
    nid: str,
    read: bool = False,
    minutes_ago: int = 0,
    category: NotificationCategory = NotificationCategory.MEMBERSHIP,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
) -> MembershipNotification:
    return MembershipNotification(
        id=nid,
        title=f"Notice {nid}",
        message=f"Body of {nid}",
        timestamp=NOW - timedelta(minutes=minutes_ago),
        read=read,
        category=category,
        priority=priority,
        type="MEMBERSHIP_EXPIRING_SOON",
        user_id=7,
    )


def reservation_at(rid: str, start: datetime, activity: str = "GROUP_CLASS") -> ReservationSnapshot:
    return ReservationSnapshot(
        reservation_id=rid,
        activity_type=activity,
        scheduled_date=start.date().isoformat(),
        scheduled_start_time=start.strftime("%H:%M"),
        scheduled_end_time=(start + timedelta(hours=1)).strftime("%H:%M"),
    )


@pytest.fixture
def persistence() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def membership_client() -> FakeMembershipClient:
    return FakeMembershipClient([
        membership_notification("m1", read=False, minutes_ago=5),
        membership_notification("m2", read=False, minutes_ago=10, category=NotificationCategory.PAYMENT),
        membership_notification("m3", read=True, minutes_ago=30),
    ])


@pytest.fixture
def membership_store(membership_client) -> MembershipNotificationStore:
    return MembershipNotificationStore(membership_client, user_id=7, dispatch=sync_dispatch)


@pytest.fixture
def reservation_store(persistence) -> ReservationNotificationStore:
    return ReservationNotificationStore(persistence)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
