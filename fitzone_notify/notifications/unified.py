"""Unified notification view.

Merges the membership store and the reservation store into a single list
for the bell / notification centre.  Each entry is tagged with the stream
it came from, and every mutation is routed back to that stream's store.

Ordering: unread before read, newest first within each group, ties broken
by ``(source, id)`` so equal timestamps always come out in the same order.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Tuple, Union

from fitzone_notify.notifications.errors import NotFound
from fitzone_notify.notifications.models import (
    NotificationCategory,
    NotificationSource,
    NotificationStats,
    UnifiedNotification,
)
from fitzone_notify.notifications.store import (
    MembershipNotificationStore,
    NotificationStore,
    ReservationNotificationStore,
)

logger = logging.getLogger(__name__)

SOURCE_FILTER_ALL = "all"

ViewListener = Callable[["UnifiedView"], None]


def sort_key(entry: UnifiedNotification) -> Tuple[bool, float, str, str]:
    return (entry.read, -entry.timestamp.timestamp(), entry.source.value, entry.id)


def parse_unified_id(unified_id: str) -> Tuple[NotificationSource, str]:
    """Split ``"membership:42"`` into its source and id.  Raises NotFound if malformed."""
    prefix, sep, nid = (unified_id or "").partition(":")
    if not sep or not nid:
        raise NotFound(unified_id)
    try:
        return NotificationSource(prefix), nid
    except ValueError:
        raise NotFound(unified_id) from None


class UnifiedView:
    def __init__(
        self,
        membership: MembershipNotificationStore,
        reservations: ReservationNotificationStore,
    ) -> None:
        self.membership = membership
        self.reservations = reservations
        self._listeners: List[ViewListener] = []
        self._lock = threading.Lock()
        membership.subscribe(self._on_store_changed)
        reservations.subscribe(self._on_store_changed)

    def _store_for(self, source: NotificationSource) -> NotificationStore:
        if source is NotificationSource.MEMBERSHIP:
            return self.membership
        if source is NotificationSource.RESERVATION:
            return self.reservations
        raise ValueError(f"unknown notification source {source!r}")

    # ── Projection ──

    def notifications(
        self,
        source: Union[str, NotificationSource] = SOURCE_FILTER_ALL,
        category: Optional[Union[str, NotificationCategory]] = None,
        unread_only: bool = False,
    ) -> List[UnifiedNotification]:
        """Sorted, filtered snapshot of both streams.

        *source* is ``"all"``, ``"membership"`` or ``"reservation"``.
        *category* keeps only membership items of that category.  Both are
        matched case-insensitively; an unknown value raises ValueError.
        """
        wanted_source = None
        if not isinstance(source, NotificationSource):
            source = str(source).lower()
            if source != SOURCE_FILTER_ALL:
                wanted_source = NotificationSource(source)
        else:
            wanted_source = source
        wanted_category = None
        if category:
            wanted_category = (
                category if isinstance(category, NotificationCategory)
                else NotificationCategory(str(category).upper())
            )

        entries: List[UnifiedNotification] = []
        for src in (NotificationSource.MEMBERSHIP, NotificationSource.RESERVATION):
            if wanted_source is not None and src is not wanted_source:
                continue
            for item in self._store_for(src).items():
                entries.append(UnifiedNotification(source=src, item=item))

        if wanted_category is not None:
            entries = [e for e in entries if e.category is wanted_category]
        if unread_only:
            entries = [e for e in entries if not e.read]
        entries.sort(key=sort_key)
        return entries

    def find(self, unified_id: str) -> Optional[UnifiedNotification]:
        try:
            source, nid = parse_unified_id(unified_id)
        except NotFound:
            return None
        item = self._store_for(source).get(nid)
        return UnifiedNotification(source=source, item=item) if item is not None else None

    def get(self, unified_id: str) -> UnifiedNotification:
        entry = self.find(unified_id)
        if entry is None:
            raise NotFound(unified_id)
        return entry

    @property
    def unread_count(self) -> int:
        return self.membership.unread_count + self.reservations.unread_count

    def stats(self) -> NotificationStats:
        return NotificationStats.from_items(self.membership.items() + self.reservations.items())

    # ── Mutations ──

    def mark_read(self, unified_id: str) -> bool:
        try:
            source, nid = parse_unified_id(unified_id)
        except NotFound:
            logger.debug("mark_read: ignoring malformed id %r", unified_id)
            return False
        return self._store_for(source).mark_read([nid]) > 0

    def delete(self, unified_id: str) -> bool:
        """Delete one entry.

        Membership entries are deleted individually (and on the backend).
        Reservation reminders have no per-item delete: removing one clears
        the reservation stream, leaving membership entries untouched.
        """
        try:
            source, nid = parse_unified_id(unified_id)
        except NotFound:
            logger.debug("delete: ignoring malformed id %r", unified_id)
            return False
        if source is NotificationSource.MEMBERSHIP:
            return self.membership.delete(nid)
        if nid not in self.reservations:
            return False
        self.reservations.clear()
        return True

    def mark_all_read(self) -> None:
        self.membership.mark_all_read()
        self.reservations.mark_all_read()

    def clear_all(self) -> None:
        self.membership.clear()
        self.reservations.clear()

    # ── Listeners ──

    def subscribe(self, fn: ViewListener) -> None:
        with self._lock:
            if fn not in self._listeners:
                self._listeners.append(fn)

    def unsubscribe(self, fn: ViewListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass

    def close(self) -> None:
        """Detach from both stores and drop all listeners."""
        self.membership.unsubscribe(self._on_store_changed)
        self.reservations.unsubscribe(self._on_store_changed)
        with self._lock:
            self._listeners.clear()

    def _on_store_changed(self, _store: NotificationStore) -> None:
        with self._lock:
            listeners_snapshot = list(self._listeners)
        for fn in listeners_snapshot:
            try:
                fn(self)
            except Exception:
                logger.exception("Unified view listener failed")
