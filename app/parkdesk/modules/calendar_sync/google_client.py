from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)


class CalendarError(RuntimeError):
    pass


class CalendarAuthError(CalendarError):
    """Token rejected or refresh refused; the stored connection is unusable."""


class CalendarNotConfigured(CalendarError):
    pass


def _to_naive_utc(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class GoogleCalendarClient:
    client_id: str
    client_secret: str
    redirect_uri: str
    timeout_seconds: int = 20

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.configured:
            raise CalendarNotConfigured("Google OAuth2 credentials not configured")

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        access_token: str | None = None,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        form: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            resp = requests.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_body,
                data=form,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as e:
            raise CalendarError(f"Google Calendar request failed: {e}") from e

        if resp.status_code in (401, 403):
            raise CalendarAuthError(f"HTTP {resp.status_code} from Google: {resp.text[:300]}")
        if resp.status_code >= 400:
            raise CalendarError(f"HTTP {resp.status_code} from Google: {resp.text[:300]}")
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise CalendarError(f"Invalid JSON from Google ({url})") from e
        return data if isinstance(data, dict) else {}

    # ---------- OAuth ----------
    def authorization_url(self, state: str) -> str:
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",  # forces a refresh token on every consent
            "state": state,
        }
        return GOOGLE_AUTH_URL + "?" + urllib.parse.urlencode(params)

    def exchange_code(self, code: str) -> dict[str, Any]:
        self._require_configured()
        return self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            form={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        self._require_configured()
        try:
            return self._request_json(
                "POST",
                GOOGLE_TOKEN_URL,
                form={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except CalendarError as e:
            # Google answers 400 invalid_grant for revoked refresh tokens.
            raise CalendarAuthError(str(e)) from e

    # ---------- Calendar ----------
    def free_busy(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        *,
        calendar_id: str = "primary",
    ) -> list[tuple[datetime, datetime]]:
        """Busy ranges (naive UTC) on one calendar. No event titles or attendees are exposed."""
        j = self._request_json(
            "POST",
            f"{GOOGLE_CALENDAR_API}/freeBusy",
            access_token=access_token,
            json_body={
                "timeMin": _rfc3339(time_min),
                "timeMax": _rfc3339(time_max),
                "items": [{"id": calendar_id}],
            },
        )
        cal = (j.get("calendars") or {}).get(calendar_id) or {}
        if cal.get("errors"):
            raise CalendarError(f"FreeBusy error for {calendar_id}: {cal['errors']}")
        out: list[tuple[datetime, datetime]] = []
        for b in cal.get("busy") or []:
            if not isinstance(b, dict) or not b.get("start") or not b.get("end"):
                continue
            out.append((_to_naive_utc(b["start"]), _to_naive_utc(b["end"])))
        return out

    def insert_event(self, access_token: str, event: dict[str, Any], *, calendar_id: str = "primary") -> dict[str, Any]:
        return self._request_json(
            "POST",
            f"{GOOGLE_CALENDAR_API}/calendars/{urllib.parse.quote(calendar_id)}/events",
            access_token=access_token,
            json_body=event,
        )

    def delete_event(self, access_token: str, event_id: str, *, calendar_id: str = "primary") -> None:
        self._request_json(
            "DELETE",
            f"{GOOGLE_CALENDAR_API}/calendars/{urllib.parse.quote(calendar_id)}/events/{urllib.parse.quote(event_id)}",
            access_token=access_token,
        )


def calendar_client_from_config(config: dict) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        client_id=config.get("GOOGLE_CLIENT_ID") or "",
        client_secret=config.get("GOOGLE_CLIENT_SECRET") or "",
        redirect_uri=config.get("GOOGLE_REDIRECT_URI") or "",
    )
