"""Membership-notification service client.

The backend owns membership notifications (expiry warnings, payment
results, promotions...).  The client fetches them per user and mirrors
read/delete operations back; all writes are idempotent on the server.
"""
from __future__ import annotations

import logging
from typing import List

from fitzone_notify.data._http import ApiClient
from fitzone_notify.notifications.errors import FetchFailure, ParseFailure
from fitzone_notify.notifications.models import MembershipNotification

logger = logging.getLogger(__name__)


class MembershipNotificationClient(ApiClient):
    """REST client for ``/api/v1/.../notifications``."""

    def fetch(self, user_id: int) -> List[MembershipNotification]:
        """Return the user's notifications in server order.

        Raises FetchFailure if the service cannot be reached or answers with
        an error.  Individual records that cannot be decoded are skipped.
        """
        data = self.request("GET", f"/api/v1/users/{user_id}/notifications")
        if data is None:
            return []
        if not isinstance(data, list):
            raise FetchFailure(f"notifications for user {user_id}: expected a list")
        out: List[MembershipNotification] = []
        for raw in data:
            try:
                out.append(MembershipNotification.from_dict(raw))
            except ParseFailure as exc:
                logger.warning("Skipping undecodable membership notification: %s", exc)
        return out

    def mark_read(self, notification_id: str) -> None:
        self.request("PATCH", f"/api/v1/notifications/{notification_id}/read")

    def mark_all_read(self, user_id: int) -> None:
        self.request("PATCH", f"/api/v1/users/{user_id}/notifications/read-all")

    def delete(self, notification_id: str) -> None:
        self.request("DELETE", f"/api/v1/notifications/{notification_id}")

    def clear(self, user_id: int) -> None:
        self.request("DELETE", f"/api/v1/users/{user_id}/notifications")
