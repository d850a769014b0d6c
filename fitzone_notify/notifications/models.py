"""Notification models and constants.

Two record shapes share the :class:`Notification` base:

* :class:`MembershipNotification` mirrors what the membership service
  returns (category, priority, metadata); the client never invents one.
* :class:`ReservationReminder` is built on the client by the reminder
  monitor and carries a snapshot of the booking that triggered it.

Both serialise to the camelCase dicts used on the wire and in local
storage.  Decoders raise :class:`ParseFailure` for a record they cannot use.
"""
from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union

from fitzone_notify.notifications.errors import ParseFailure


class NotificationSource(str, Enum):
    MEMBERSHIP = "membership"
    RESERVATION = "reservation"


class NotificationCategory(str, Enum):
    MEMBERSHIP = "MEMBERSHIP"
    PAYMENT = "PAYMENT"
    RESERVATION = "RESERVATION"
    PROMOTION = "PROMOTION"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReminderKind(str, Enum):
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"
    UPDATE = "update"


# Activity types the reservation service knows about, with the wording used
# in reminder messages.
ACTIVITY_DISPLAY_NAMES: Dict[str, str] = {
    "GROUP_CLASS": "Group Class",
    "PERSONAL_TRAINING": "Personal Training",
    "SPECIALIZED_SPACE": "Specialized Space",
}


def activity_display_name(activity_type: str) -> str:
    return ACTIVITY_DISPLAY_NAMES.get((activity_type or "").upper(), "Reservation")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_notification_id() -> str:
    return uuid.uuid4().hex


def parse_timestamp(value: Any) -> datetime:
    """Read an ISO-8601 timestamp.  Naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ParseFailure(f"bad timestamp {value!r}") from exc
    else:
        raise ParseFailure(f"missing timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    return dt.isoformat()


def _enum_or(enum_cls, value: Any, fallback):
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        return fallback


# ── Records ──


@dataclass
class Notification:
    id: str = ""
    title: str = ""
    message: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    read: bool = False
    action_url: Optional[str] = None
    action_label: Optional[str] = None


@dataclass
class MembershipNotification(Notification):
    category: NotificationCategory = NotificationCategory.SYSTEM
    priority: NotificationPriority = NotificationPriority.MEDIUM
    type: str = ""  # server code, e.g. MEMBERSHIP_EXPIRING_SOON
    user_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[datetime] = None

    source = NotificationSource.MEMBERSHIP

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MembershipNotification":
        if not isinstance(data, dict):
            raise ParseFailure(f"expected an object, got {type(data).__name__}")
        raw_id = data.get("id")
        if raw_id is None or str(raw_id) == "":
            raise ParseFailure("membership notification without id")
        user_id = data.get("userId")
        try:
            user_id = int(user_id) if user_id is not None else None
        except (TypeError, ValueError):
            user_id = None
        metadata = data.get("metadata") or {}
        expires_at = data.get("expiresAt")
        return cls(
            id=str(raw_id),
            title=str(data.get("title") or ""),
            message=str(data.get("message") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            read=bool(data.get("read", False)),
            action_url=data.get("actionUrl") or None,
            action_label=data.get("actionLabel") or None,
            category=_enum_or(NotificationCategory, data.get("category"), NotificationCategory.SYSTEM),
            priority=_enum_or(NotificationPriority, data.get("priority"), NotificationPriority.MEDIUM),
            type=str(data.get("type") or ""),
            user_id=user_id,
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
            expires_at=parse_timestamp(expires_at) if expires_at else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "category": self.category.value,
            "priority": self.priority.value,
            "title": self.title,
            "message": self.message,
            "timestamp": format_timestamp(self.timestamp),
            "read": self.read,
        }
        if self.action_url:
            out["actionUrl"] = self.action_url
        if self.action_label:
            out["actionLabel"] = self.action_label
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        if self.expires_at is not None:
            out["expiresAt"] = format_timestamp(self.expires_at)
        return out


@dataclass(frozen=True)
class ReservationSnapshot:
    """The parts of a booking a reminder needs to describe it."""

    reservation_id: str
    activity_type: str
    scheduled_date: str  # YYYY-MM-DD
    scheduled_start_time: str  # HH:MM
    scheduled_end_time: str = ""

    @property
    def activity_name(self) -> str:
        return activity_display_name(self.activity_type)

    def starts_at(self, tz: Optional[tzinfo] = None) -> datetime:
        """Start instant in *tz* (``None`` means the machine's local zone)."""
        try:
            day = date.fromisoformat(self.scheduled_date)
            start = time.fromisoformat(self.scheduled_start_time)
        except (TypeError, ValueError) as exc:
            raise ParseFailure(
                f"reservation {self.reservation_id}: bad schedule "
                f"{self.scheduled_date!r} {self.scheduled_start_time!r}"
            ) from exc
        naive = datetime.combine(day, start)
        if tz is None:
            return naive.astimezone()
        return naive.replace(tzinfo=tz)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReservationSnapshot":
        """Accept both the upcoming-query shape and the full reservation shape."""
        if not isinstance(data, dict):
            raise ParseFailure(f"expected an object, got {type(data).__name__}")
        rid = data.get("reservationId", data.get("id"))
        if rid is None or str(rid) == "":
            raise ParseFailure("reservation without id")
        return cls(
            reservation_id=str(rid),
            activity_type=str(data.get("activityType") or data.get("type") or ""),
            scheduled_date=str(data.get("scheduledDate") or ""),
            scheduled_start_time=str(data.get("scheduledStartTime") or ""),
            scheduled_end_time=str(data.get("scheduledEndTime") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservationId": self.reservation_id,
            "activityType": self.activity_type,
            "scheduledDate": self.scheduled_date,
            "scheduledStartTime": self.scheduled_start_time,
            "scheduledEndTime": self.scheduled_end_time,
        }


@dataclass
class ReservationReminder(Notification):
    kind: ReminderKind = ReminderKind.REMINDER
    reservation: Optional[ReservationSnapshot] = None
    threshold: Optional[str] = None  # threshold id that fired it, if any

    source = NotificationSource.RESERVATION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReservationReminder":
        if not isinstance(data, dict):
            raise ParseFailure(f"expected an object, got {type(data).__name__}")
        raw_id = data.get("id")
        if raw_id is None or str(raw_id) == "":
            raise ParseFailure("reservation reminder without id")
        try:
            kind = ReminderKind(str(data.get("type") or "reminder").lower())
        except ValueError as exc:
            raise ParseFailure(f"unknown reminder type {data.get('type')!r}") from exc
        res = data.get("reservation")
        return cls(
            id=str(raw_id),
            title=str(data.get("title") or ""),
            message=str(data.get("message") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            read=bool(data.get("read", False)),
            action_url=data.get("actionUrl") or None,
            action_label=data.get("actionLabel") or None,
            kind=kind,
            reservation=ReservationSnapshot.from_dict(res) if res else None,
            threshold=data.get("threshold") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "timestamp": format_timestamp(self.timestamp),
            "read": self.read,
        }
        if self.reservation is not None:
            out["reservation"] = self.reservation.to_dict()
        if self.threshold:
            out["threshold"] = self.threshold
        if self.action_url:
            out["actionUrl"] = self.action_url
        if self.action_label:
            out["actionLabel"] = self.action_label
        return out


AnyNotification = Union[MembershipNotification, ReservationReminder]


@dataclass(frozen=True)
class UnifiedNotification:
    """A notification tagged with the stream it came from."""

    source: NotificationSource
    item: AnyNotification

    @property
    def unified_id(self) -> str:
        return make_unified_id(self.source, self.item.id)

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def read(self) -> bool:
        return self.item.read

    @property
    def timestamp(self) -> datetime:
        return self.item.timestamp

    @property
    def title(self) -> str:
        return self.item.title

    @property
    def message(self) -> str:
        return self.item.message

    @property
    def category(self) -> Optional[NotificationCategory]:
        if self.source is NotificationSource.MEMBERSHIP:
            return self.item.category
        return None


def make_unified_id(source: NotificationSource, notification_id: str) -> str:
    return f"{source.value}:{notification_id}"


@dataclass
class NotificationStats:
    total: int = 0
    unread: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_items(cls, items: Iterable[Notification]) -> "NotificationStats":
        items = list(items)
        categories: Counter = Counter()
        priorities: Counter = Counter()
        for n in items:
            if isinstance(n, MembershipNotification):
                categories[n.category.value] += 1
                priorities[n.priority.value] += 1
            elif isinstance(n, ReservationReminder):
                # Reminders have no server category; they are reservation news.
                categories[NotificationCategory.RESERVATION.value] += 1
        return cls(
            total=len(items),
            unread=sum(1 for n in items if not n.read),
            by_category=dict(categories),
            by_priority=dict(priorities),
        )
