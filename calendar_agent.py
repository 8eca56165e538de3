from dataclasses import dataclass, fields
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calendar_auth import TokenManager
from calendar_errors import EventNotFoundError, TokenExpiredError, UpstreamError, ValidationError

logger = logging.getLogger("calendar_agent")

NOT_FOUND_STATUSES = (404, 410)


def _build_calendar_service(creds: Credentials):
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def parse_iso_datetime(value: str) -> datetime:
    # fromisoformat only accepts a trailing "Z" from Python 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def normalize_event_time(value: Any, default_timezone: str, field_name: str) -> Dict[str, str]:
    """Turn an ISO-8601 string or a {dateTime, timeZone} object into the upstream shape."""
    if isinstance(value, dict):
        date_time = value.get("dateTime")
        time_zone = value.get("timeZone") or default_timezone
    else:
        date_time = value
        time_zone = default_timezone

    if not isinstance(date_time, str) or not date_time.strip():
        raise ValidationError(f"'{field_name}' must be an ISO 8601 date-time")
    date_time = date_time.strip()
    try:
        if "T" not in date_time:
            raise ValueError(date_time)
        parse_iso_datetime(date_time)
    except ValueError:
        raise ValidationError(f"'{field_name}' is not a valid ISO 8601 date-time: {date_time}")
    return {"dateTime": date_time, "timeZone": time_zone}


@dataclass
class EventFields:
    """Writable event fields. ``None`` means "not given"."""

    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[Dict[str, str]] = None
    end: Optional[Dict[str, str]] = None
    attendees: Optional[List[str]] = None

    @classmethod
    def from_upstream(cls, event: Dict[str, Any]) -> "EventFields":
        attendees = None
        if "attendees" in event:
            attendees = [a["email"] for a in event["attendees"] if a.get("email")]
        return cls(
            summary=event.get("summary"),
            description=event.get("description"),
            location=event.get("location"),
            start=event.get("start"),
            end=event.get("end"),
            attendees=attendees,
        )

    def to_upstream(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        for name in ("summary", "description", "location", "start", "end"):
            value = getattr(self, name)
            if value is not None:
                body[name] = value
        if self.attendees is not None:
            body["attendees"] = [{"email": email} for email in self.attendees]
        return body


def merge_event_fields(current: EventFields, patch: EventFields) -> EventFields:
    """Apply a partial update: every field missing from ``patch`` keeps its current value."""
    merged = {}
    for f in fields(EventFields):
        value = getattr(patch, f.name)
        merged[f.name] = value if value is not None else getattr(current, f.name)
    return EventFields(**merged)


def _event_time(value: Optional[Dict[str, str]]) -> Optional[str]:
    if not value:
        return None
    return value.get("dateTime", value.get("date"))


def to_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """Project an upstream event onto the fields the tools expose."""
    return {
        "id": event.get("id"),
        "summary": event.get("summary"),
        "description": event.get("description"),
        "location": event.get("location"),
        "start": _event_time(event.get("start")),
        "end": _event_time(event.get("end")),
        "attendees": [a["email"] for a in event.get("attendees", []) if a.get("email")],
        "htmlLink": event.get("htmlLink"),
        "status": event.get("status"),
    }


class CalendarAgent:
    """Thin wrapper around the Google Calendar v3 events resource."""

    def __init__(
        self,
        token_manager: TokenManager,
        calendar_id: str = "primary",
        service_factory: Optional[Callable[[Credentials], Any]] = None,
    ):
        self.token_manager = token_manager
        self.calendar_id = calendar_id
        self.service_factory = service_factory or _build_calendar_service

    def _events(self):
        # Credentials are checked before the service is built, so auth failures cost no network call
        creds = self.token_manager.google_credentials()
        return self.service_factory(creds).events()

    def _execute(self, request, event_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            return request.execute()
        except GoogleAuthError as error:
            self.token_manager.invalidate(str(error))
            raise TokenExpiredError()
        except HttpError as error:
            status = error.resp.status
            if status == 401:
                self.token_manager.invalidate(f"HTTP 401 {error.reason}")
                raise TokenExpiredError()
            if event_id is not None and status in NOT_FOUND_STATUSES:
                raise EventNotFoundError(event_id)
            logger.error(f"Google Calendar API error {status}: {error}")
            raise UpstreamError(f"Google Calendar API error {status}: {error.reason}", status=status)
        except (httplib2.HttpLib2Error, OSError) as error:
            logger.error(f"Google Calendar API unreachable: {error}")
            raise UpstreamError(f"Google Calendar API request failed: {error}")

    def list_events(self, time_min: str, time_max: Optional[str] = None, max_results: int = 10) -> List[Dict[str, Any]]:
        params = {
            "calendarId": self.calendar_id,
            "timeMin": time_min,
            "maxResults": max_results,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if time_max:
            params["timeMax"] = time_max
        logger.info(f"Listing events from {time_min} to {time_max or 'open end'} (max {max_results})")
        result = self._execute(self._events().list(**params))
        return result.get("items", []) or []

    def get_event(self, event_id: str) -> Dict[str, Any]:
        return self._execute(
            self._events().get(calendarId=self.calendar_id, eventId=event_id),
            event_id=event_id,
        )

    def insert_event(self, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Creating event '{body.get('summary')}'")
        return self._execute(self._events().insert(calendarId=self.calendar_id, body=body))

    def update_event(self, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Updating event {event_id}")
        return self._execute(
            self._events().update(calendarId=self.calendar_id, eventId=event_id, body=body),
            event_id=event_id,
        )

    def delete_event(self, event_id: str) -> None:
        logger.info(f"Deleting event {event_id}")
        self._execute(
            self._events().delete(calendarId=self.calendar_id, eventId=event_id),
            event_id=event_id,
        )
