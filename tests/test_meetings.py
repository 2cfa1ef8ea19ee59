"""
Tests for services/meetings.py and /api/leads/{id}/meetings.

Covers:
- 12-hour time parsing and start/end ordering
- Calendar-first creation (no event, no meeting row)
- Insufficient scopes surfacing as 403
- Reschedule and cancel
"""

import json

import pytest

from leadrabbit.errors import ValidationError
from leadrabbit.models import Meeting
from leadrabbit.services.meetings import parse_12_hour_time, validate_meeting_times
from tests.conftest import AGENT_EMAIL, OTHER_AGENT_EMAIL


def _url(lead_id, meeting_id=None):
    base = f"/api/leads/{lead_id}/meetings"
    return f"{base}/{meeting_id}" if meeting_id is not None else base


MEETING = {
    "title": "Site visit",
    "date": "2024-05-20",
    "startTime": "01:00 PM",
    "endTime": "02:00 PM",
    "location": "Sector 45",
}


# ============================================================
# Time handling
# ============================================================

class TestTimes:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("01:00 PM", "13:00"),
            ("12:00 PM", "12:00"),
            ("12:30 am", "00:30"),
            ("9:05 AM", "09:05"),
            ("11:59  pm", "23:59"),
        ],
    )
    def test_parse_12_hour_time(self, label, expected):
        assert parse_12_hour_time(label) == expected

    @pytest.mark.parametrize("label", ["13:00 PM", "1 PM", "01:60 AM", "", None, "14:00"])
    def test_parse_rejects_malformed(self, label):
        assert parse_12_hour_time(label) is None

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_meeting_times("2024-05-20", "02:00 PM", "01:00 PM")

    def test_equal_times_are_rejected(self):
        with pytest.raises(ValidationError):
            validate_meeting_times("2024-05-20", "02:00 PM", "02:00 PM")

    def test_valid_times_build_local_date_times(self):
        times = validate_meeting_times("2024-05-20", "01:00 pm", "02:00 PM")
        assert times.start_label == "01:00 PM"
        assert times.start_date_time == "2024-05-20T13:00:00"
        assert times.end_date_time == "2024-05-20T14:00:00"


# ============================================================
# Endpoints
# ============================================================

class TestMeetingEndpoints:
    def test_record_meeting_creates_event_then_row(
        self, login_as, make_lead, connect_calendar, calendar_calls, tenant_db
    ):
        lead_id = make_lead(assigned_to=AGENT_EMAIL, name="Priya", email="priya@example.com")
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(_url(lead_id), json=MEETING)

        assert response.status_code == 201
        body = response.json()
        assert body["googleCalendarSynced"] is True
        assert body["meeting"]["googleEventId"] == "evt-123"
        assert body["meeting"]["startTime"] == "01:00 PM"
        assert body["meeting"]["attendees"] == [AGENT_EMAIL, "priya@example.com"]

        assert len(calendar_calls.requests) == 1
        sent = calendar_calls.requests[0]
        assert sent.method == "POST"
        assert sent.params["sendUpdates"] == "all"
        event = json.loads(sent.body)
        assert event["start"]["dateTime"] == "2024-05-20T13:00:00"
        assert event["attendees"][1] == {"email": "priya@example.com", "displayName": "Priya"}

        assert tenant_db.query(Meeting).count() == 1

    def test_reversed_times_are_rejected_before_calendar(
        self, login_as, make_lead, connect_calendar, calendar_calls, tenant_db
    ):
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(
            _url(lead_id),
            json=dict(MEETING, startTime="02:00 PM", endTime="01:00 PM"),
        )

        assert response.status_code == 400
        assert calendar_calls.requests == []
        assert tenant_db.query(Meeting).count() == 0

    def test_calendar_failure_leaves_no_meeting(
        self, login_as, make_lead, connect_calendar, calendar_calls, tenant_db
    ):
        calendar_calls.responder = lambda call: (500, {"error": {"code": 500, "message": "backend"}})
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(_url(lead_id), json=MEETING)

        assert response.status_code == 502
        assert tenant_db.query(Meeting).count() == 0

    def test_insufficient_scopes_is_403_with_code(
        self, login_as, make_lead, connect_calendar, calendar_calls, tenant_db
    ):
        calendar_calls.responder = lambda call: (
            403, {"error": {"code": 403, "message": "Request had insufficient authentication scopes."}}
        )
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(_url(lead_id), json=MEETING)

        assert response.status_code == 403
        assert response.json()["code"] == "INSUFFICIENT_SCOPES"
        assert tenant_db.query(Meeting).count() == 0

    def test_not_connected_is_400(self, login_as, make_lead, calendar_calls):
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(_url(lead_id), json=MEETING)

        assert response.status_code == 400
        assert response.json()["code"] == "GOOGLE_CALENDAR_NOT_CONNECTED"
        assert calendar_calls.requests == []

    def test_reschedule_updates_event_and_row(
        self, login_as, make_lead, connect_calendar, calendar_calls
    ):
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)
        meeting_id = client.post(_url(lead_id), json=MEETING).json()["meeting"]["id"]

        response = client.patch(_url(lead_id, meeting_id), json={"startTime": "03:00 PM", "endTime": "04:30 PM"})

        assert response.status_code == 200
        meeting = response.json()["meeting"]
        assert meeting["title"] == "Site visit"
        assert meeting["endDateTime"] == "2024-05-20T16:30:00"
        assert calendar_calls.requests[-1].method == "PUT"
        assert calendar_calls.requests[-1].path.endswith("/evt-123")

    def test_cancel_marks_cancelled(self, login_as, make_lead, connect_calendar, calendar_calls):
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)
        meeting_id = client.post(_url(lead_id), json=MEETING).json()["meeting"]["id"]

        response = client.delete(_url(lead_id, meeting_id))

        assert response.status_code == 200
        body = response.json()
        assert body["meeting"]["status"] == "cancelled"
        assert body["meeting"]["cancelledAt"] is not None
        assert body["googleCalendarSynced"] is True
        assert calendar_calls.requests[-1].method == "DELETE"

    def test_cancel_survives_calendar_failure(
        self, login_as, make_lead, connect_calendar, calendar_calls
    ):
        lead_id = make_lead(assigned_to=AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)
        meeting_id = client.post(_url(lead_id), json=MEETING).json()["meeting"]["id"]

        calendar_calls.responder = lambda call: (500, None)
        response = client.delete(_url(lead_id, meeting_id))

        assert response.status_code == 200
        assert response.json()["meeting"]["status"] == "cancelled"
        assert response.json()["googleCalendarSynced"] is False

    def test_meeting_on_another_agents_lead_is_404(
        self, login_as, make_lead, connect_calendar, calendar_calls, tenant_db
    ):
        lead_id = make_lead(assigned_to=OTHER_AGENT_EMAIL)
        connect_calendar(AGENT_EMAIL)
        client = login_as(AGENT_EMAIL)

        response = client.post(_url(lead_id), json=MEETING)

        assert response.status_code == 404
        assert calendar_calls.requests == []
        assert tenant_db.query(Meeting).count() == 0
