"""Shared fixtures: an in-memory stand-in for the Google Calendar events resource."""

import copy
import json
from datetime import datetime, timedelta, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from calendar_agent import CalendarAgent, parse_iso_datetime
from calendar_auth import Credential, CredentialStore, TokenManager
from calendar_config import Settings
from calendar_tools import CalendarTools

CLIENT_CONFIG = {
    "web": {
        "client_id": "test-client-id.apps.googleusercontent.com",
        "client_secret": "test-client-secret",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
        "redirect_uris": ["http://localhost:3000/auth/callback"],
    }
}


def http_error(status, message="error"):
    resp = httplib2.Response({"status": status})
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(resp, content)


class FakeRequest:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeEvents:
    """Mimics the subset of ``service.events()`` the agent uses."""

    def __init__(self):
        self.store = {}
        self.calls = []
        self.fail_with = None
        self._next_id = 1

    def _record(self, method, **kwargs):
        self.calls.append((method, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def _lookup(self, event_id):
        event = self.store.get(event_id)
        if event is None or event.get("status") == "cancelled":
            raise http_error(404, "Not Found")
        return event

    def list(self, **kwargs):
        def run():
            self._record("list", **kwargs)
            time_min = parse_iso_datetime(kwargs["timeMin"])
            time_max = parse_iso_datetime(kwargs["timeMax"]) if kwargs.get("timeMax") else None
            items = []
            for event in self.store.values():
                if event.get("status") == "cancelled":
                    continue
                start = parse_iso_datetime(event["start"]["dateTime"])
                end = parse_iso_datetime(event["end"]["dateTime"])
                if end <= time_min or (time_max is not None and start >= time_max):
                    continue
                items.append(event)
            items.sort(key=lambda e: parse_iso_datetime(e["start"]["dateTime"]))
            return {"kind": "calendar#events", "items": copy.deepcopy(items[: kwargs["maxResults"]])}

        return FakeRequest(run)

    def get(self, calendarId, eventId):
        def run():
            self._record("get", calendarId=calendarId, eventId=eventId)
            return copy.deepcopy(self._lookup(eventId))

        return FakeRequest(run)

    def insert(self, calendarId, body):
        def run():
            self._record("insert", calendarId=calendarId, body=copy.deepcopy(body))
            event_id = f"evt{self._next_id}"
            self._next_id += 1
            event = copy.deepcopy(body)
            event.update(
                {
                    "id": event_id,
                    "status": "confirmed",
                    "htmlLink": f"https://www.google.com/calendar/event?eid={event_id}",
                }
            )
            self.store[event_id] = event
            return copy.deepcopy(event)

        return FakeRequest(run)

    def update(self, calendarId, eventId, body):
        def run():
            self._record("update", calendarId=calendarId, eventId=eventId, body=copy.deepcopy(body))
            self._lookup(eventId)
            self.store[eventId] = copy.deepcopy(body)
            return copy.deepcopy(body)

        return FakeRequest(run)

    def delete(self, calendarId, eventId):
        def run():
            self._record("delete", calendarId=calendarId, eventId=eventId)
            self._lookup(eventId)
            self.store[eventId]["status"] = "cancelled"
            return ""

        return FakeRequest(run)

    def methods(self):
        return [method for method, _ in self.calls]


class FakeService:
    def __init__(self, events):
        self._events = events
        self.credentials = []

    def events(self):
        return self._events


@pytest.fixture
def settings():
    return Settings(credentials_json=json.dumps(CLIENT_CONFIG))


@pytest.fixture
def store():
    return CredentialStore()


@pytest.fixture
def token_manager(settings, store):
    return TokenManager(settings, store=store)


@pytest.fixture
def fake_events():
    return FakeEvents()


@pytest.fixture
def fake_service(fake_events):
    return FakeService(fake_events)


@pytest.fixture
def tools(settings, token_manager, fake_service):
    def service_factory(creds):
        fake_service.credentials.append(creds)
        return fake_service

    agent = CalendarAgent(token_manager, calendar_id=settings.calendar_id, service_factory=service_factory)
    return CalendarTools(token_manager, agent, default_timezone=settings.default_timezone)


@pytest.fixture
def authenticated(store):
    credential = Credential(
        access_token="ya29.fake_access_token",
        refresh_token="1//fake_refresh_token",
        expiry=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    store.set(credential)
    return credential
