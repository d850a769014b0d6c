"""Reservation query client (read-only).

Only the "upcoming bookings" query is needed here: the reminder monitor
polls it and works out which bookings are close enough to remind about.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Callable, List, Optional

from fitzone_notify.data._http import ApiClient
from fitzone_notify.notifications.errors import FetchFailure, ParseFailure
from fitzone_notify.notifications.models import ReservationSnapshot

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 7


class ReservationClient(ApiClient):

    def __init__(self, *args, today_fn: Optional[Callable[[], date]] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._today = today_fn or date.today

    def get_upcoming(self, user_id: Optional[int] = None) -> List[ReservationSnapshot]:
        """Active bookings from today through the next week.

        The backend resolves the member from the bearer token; *user_id* is
        only used for logging.
        """
        today = self._today()
        params = {
            "status": "ACTIVE",
            "startDate": today.isoformat(),
            "endDate": (today + timedelta(days=UPCOMING_WINDOW_DAYS)).isoformat(),
        }
        data = self.request("GET", "/reservations/my", params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise FetchFailure("upcoming reservations: expected a list")
        out: List[ReservationSnapshot] = []
        for raw in data:
            try:
                out.append(ReservationSnapshot.from_dict(raw))
            except ParseFailure as exc:
                logger.warning("Skipping undecodable reservation: %s", exc)
        logger.debug("Upcoming reservations for user %s: %d", user_id, len(out))
        return out
