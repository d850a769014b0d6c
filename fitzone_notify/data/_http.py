"""Shared HTTP plumbing for the backend clients.

Both the membership-notification client and the reservation client talk to
the same backend, wrap their payloads in the same ``{"success", "data",
"message"}`` envelope, and authenticate with the same bearer token.  Keeping
the session setup and the envelope handling here means every client raises
the same :class:`FetchFailure` for the same kind of trouble.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from fitzone_notify.notifications.errors import FetchFailure

logger = logging.getLogger(__name__)

JSON_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": "fitzone-notify/1.0",
}


def build_session(access_token: Optional[str] = None) -> requests.Session:
    """Return a Session with JSON headers and, if given, a bearer token."""
    session = requests.Session()
    session.headers.update(JSON_HEADERS)
    if access_token:
        session.headers["Authorization"] = f"Bearer {access_token}"
    return session


class ApiClient:
    """Base for the backend clients: one session, one base URL, one timeout."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        access_token: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else build_session(access_token)
        self.timeout = timeout

    def request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send a request and return the envelope's ``data`` member.

        Raises :class:`FetchFailure` on transport errors, HTTP errors,
        undecodable bodies, and envelopes with ``success: false``.
        """
        url = f"{self.base_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)
        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, **kwargs)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise FetchFailure(f"{method} {url} failed: {exc}", status_code=status) from exc
        except requests.RequestException as exc:
            raise FetchFailure(f"{method} {url} failed: {exc}") from exc

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            body = resp.json()
        except ValueError as exc:
            raise FetchFailure(f"{method} {url} returned a non-JSON body") from exc

        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                msg = body.get("message") or body.get("error") or "request rejected"
                raise FetchFailure(f"{method} {url}: {msg}", status_code=resp.status_code)
            return body.get("data")
        return body

    def close(self) -> None:
        self.session.close()
