"""Notification stores.

A store holds one stream of notifications in memory, applies the read /
delete / clear mutations, keeps the unread count current and tells its
listeners whenever anything changed.  Two concrete stores exist:

* :class:`MembershipNotificationStore` mirrors the membership service.
  Every local mutation is also sent to the backend, fire-and-forget; local
  state stays authoritative for the UI whether or not the call lands.
* :class:`ReservationNotificationStore` holds the client-generated
  reservation reminders and persists every change through the injected
  :class:`~fitzone_notify.storage.persistence.PersistenceLayer`.

Mutations take the store lock for the whole read-modify-persist step, so
the reminder monitor's background thread and the UI never interleave
inside one.  Listeners run after the lock is released.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Set

from fitzone_notify.data.membership_api import MembershipNotificationClient
from fitzone_notify.notifications.errors import FetchFailure, ParseFailure
from fitzone_notify.notifications.models import (
    AnyNotification,
    MembershipNotification,
    NotificationSource,
    NotificationStats,
    ReservationReminder,
    new_notification_id,
)
from fitzone_notify.storage.persistence import (
    PersistenceLayer,
    load_collection,
    save_collection,
)

logger = logging.getLogger(__name__)

RESERVATION_STORAGE_KEY = "reservation-notifications"

Listener = Callable[["NotificationStore"], None]
Dispatcher = Callable[[Callable[[], None]], None]


def thread_dispatch(fn: Callable[[], None]) -> None:
    """Run *fn* on a daemon thread and return immediately."""
    threading.Thread(target=fn, name="notify-remote-write", daemon=True).start()


class NotificationStore:
    """Ordered, observable collection of one notification stream."""

    source: NotificationSource
    item_type: type = object

    def __init__(self) -> None:
        self._items: List[AnyNotification] = []
        self._unread = 0
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._closed = False

    # ── Queries ──

    def items(self) -> List[AnyNotification]:
        """Snapshot of the collection, in store order."""
        with self._lock:
            return list(self._items)

    def get(self, notification_id: str) -> Optional[AnyNotification]:
        with self._lock:
            for n in self._items:
                if n.id == notification_id:
                    return n
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, notification_id: object) -> bool:
        return isinstance(notification_id, str) and self.get(notification_id) is not None

    @property
    def unread_count(self) -> int:
        with self._lock:
            return self._unread

    def stats(self) -> NotificationStats:
        return NotificationStats.from_items(self.items())

    # ── Listeners ──

    def subscribe(self, fn: Listener) -> None:
        """Register a callback invoked with the store after every change."""
        with self._lock:
            if fn not in self._listeners:
                self._listeners.append(fn)

    def unsubscribe(self, fn: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass

    def close(self) -> None:
        """Dispose of the store: drop listeners and ignore late load results."""
        with self._lock:
            self._closed = True
            self._listeners.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Mutations ──

    def load(self) -> List[AnyNotification]:
        raise NotImplementedError

    def add(self, notification: AnyNotification) -> AnyNotification:
        """Insert *notification*, assigning an id if it has none.

        Adding an id the store already holds is a no-op that returns the
        record already stored.
        """
        if not isinstance(notification, self.item_type):
            raise TypeError(
                f"{self.source.value} store cannot hold {type(notification).__name__}"
            )
        with self._lock:
            if not notification.id:
                notification.id = new_notification_id()
            else:
                for existing in self._items:
                    if existing.id == notification.id:
                        logger.debug("%s store already holds %s", self.source.value, notification.id)
                        return existing
            self._insert(notification)
            self._changed()
        self._notify()
        return notification

    def mark_read(self, ids: Iterable[str]) -> int:
        """Mark the given ids read.  Unknown ids are ignored.  Returns how many changed."""
        wanted: Set[str] = {ids} if isinstance(ids, str) else set(ids)
        with self._lock:
            changed = [n for n in self._items if n.id in wanted and not n.read]
            for n in changed:
                n.read = True
            if changed:
                self._changed()
            self._after_mark_read([n.id for n in changed])
        if changed:
            self._notify()
        return len(changed)

    def mark_all_read(self) -> int:
        with self._lock:
            changed = [n for n in self._items if not n.read]
            for n in changed:
                n.read = True
            if changed:
                self._changed()
            self._after_mark_all_read()
        if changed:
            self._notify()
        return len(changed)

    def delete(self, notification_id: str) -> bool:
        """Remove one item.  Returns False (and changes nothing) if it is absent."""
        with self._lock:
            for idx, n in enumerate(self._items):
                if n.id == notification_id:
                    del self._items[idx]
                    break
            else:
                logger.debug("%s store: delete of unknown id %s ignored", self.source.value, notification_id)
                return False
            self._changed()
            self._after_delete(notification_id)
        self._notify()
        return True

    def clear(self) -> None:
        with self._lock:
            removed = [n.id for n in self._items]
            self._items = []
            self._changed()
            self._after_clear(removed)
        self._notify()

    # ── Hooks for subclasses ──

    def _insert(self, notification: AnyNotification) -> None:
        self._items.append(notification)

    def _persist(self) -> None:
        pass

    def _after_mark_read(self, ids: List[str]) -> None:
        pass

    def _after_mark_all_read(self) -> None:
        pass

    def _after_delete(self, notification_id: str) -> None:
        pass

    def _after_clear(self, removed_ids: List[str]) -> None:
        pass

    # ── Internal helpers ──

    def _changed(self) -> None:
        # Caller holds the lock.
        self._unread = sum(1 for n in self._items if not n.read)
        try:
            self._persist()
        except Exception:
            logger.exception("%s store: persisting failed, keeping in-memory state", self.source.value)

    def _notify(self) -> None:
        with self._lock:
            listeners_snapshot = list(self._listeners)
        # Fire listeners *outside* the lock so they can safely call back in.
        for fn in listeners_snapshot:
            try:
                fn(self)
            except Exception:
                logger.exception("%s store listener failed", self.source.value)


class MembershipNotificationStore(NotificationStore):
    """Local mirror of the membership service's notifications."""

    source = NotificationSource.MEMBERSHIP
    item_type = MembershipNotification

    def __init__(
        self,
        client: MembershipNotificationClient,
        user_id: Optional[int],
        dispatch: Optional[Dispatcher] = None,
    ) -> None:
        super().__init__()
        self.client = client
        self.user_id = user_id
        self._dispatch = dispatch or thread_dispatch
        # Ids deleted here whose remote delete may not have landed yet.
        self._tombstones: Set[str] = set()

    def load(self) -> List[MembershipNotification]:
        """Refresh from the service.

        Returns the merged collection, or ``[]`` if nobody is signed in or the
        fetch failed.  On failure the previous snapshot stays in the store.
        """
        if self.user_id is None:
            logger.debug("Membership notifications: no signed-in user, nothing to load")
            return []
        try:
            fetched = self.client.fetch(self.user_id)
        except (FetchFailure, ParseFailure) as exc:
            logger.warning("Membership notifications unavailable: %s", exc)
            return []

        with self._lock:
            if self._closed:
                logger.debug("Membership store closed during fetch; discarding result")
                return []
            read_here = {n.id for n in self._items if n.read}
            fetched_ids = {n.id for n in fetched}
            merged: List[MembershipNotification] = []
            seen: Set[str] = set()
            for n in fetched:
                if n.id in self._tombstones or n.id in seen:
                    continue
                seen.add(n.id)
                if n.id in read_here:
                    n.read = True
                merged.append(n)
            # The server no longer returns these, so their deletes have landed.
            self._tombstones &= fetched_ids
            self._items = merged
            self._changed()
            snapshot = list(self._items)
        logger.debug("Membership notifications loaded: %d (%d unread)", len(snapshot), self.unread_count)
        self._notify()
        return snapshot

    def _after_mark_read(self, ids: List[str]) -> None:
        if self.user_id is None:
            return
        for nid in ids:
            self._remote("mark_read", self.client.mark_read, nid)

    def _after_mark_all_read(self) -> None:
        if self.user_id is not None:
            self._remote("mark_all_read", self.client.mark_all_read, self.user_id)

    def _after_delete(self, notification_id: str) -> None:
        self._tombstones.add(notification_id)
        if self.user_id is not None:
            self._remote("delete", self.client.delete, notification_id)

    def _after_clear(self, removed_ids: List[str]) -> None:
        self._tombstones.update(removed_ids)
        if self.user_id is not None:
            self._remote("clear", self.client.clear, self.user_id)

    def _remote(self, label: str, fn: Callable, *args) -> None:
        """Send a write to the backend without waiting for it."""

        def _call() -> None:
            try:
                fn(*args)
            except FetchFailure as exc:
                logger.warning("Remote %s%r failed, local state kept: %s", label, args, exc)
            except Exception:
                logger.exception("Remote %s%r failed unexpectedly", label, args)

        self._dispatch(_call)


class ReservationNotificationStore(NotificationStore):
    """Client-generated reservation reminders, persisted locally."""

    source = NotificationSource.RESERVATION
    item_type = ReservationReminder

    def __init__(self, persistence: PersistenceLayer, key: str = RESERVATION_STORAGE_KEY) -> None:
        super().__init__()
        self.persistence = persistence
        self.key = key

    def load(self) -> List[ReservationReminder]:
        """Read the persisted reminders.  Unusable data reads as ``[]``.

        Reminders added while the read was in progress are kept, ahead of
        the stored ones.
        """
        with self._lock:
            before = {n.id for n in self._items}
            records = load_collection(self.persistence, self.key)
            loaded: List[ReservationReminder] = []
            seen: Set[str] = set()
            for raw in records:
                try:
                    reminder = ReservationReminder.from_dict(raw)
                except ParseFailure as exc:
                    logger.warning("Dropping undecodable stored reminder: %s", exc)
                    continue
                if reminder.id in seen:
                    continue
                seen.add(reminder.id)
                loaded.append(reminder)
            added_meanwhile = [n for n in self._items if n.id not in before and n.id not in seen]
            self._items = added_meanwhile + loaded
            if added_meanwhile:
                self._changed()
            else:
                self._unread = sum(1 for n in self._items if not n.read)
            snapshot = list(self._items)
        self._notify()
        return snapshot

    def _insert(self, notification: AnyNotification) -> None:
        # Newest first, the order the reminder list is shown in.
        self._items.insert(0, notification)

    def _persist(self) -> None:
        save_collection(self.persistence, self.key, [n.to_dict() for n in self._items])
