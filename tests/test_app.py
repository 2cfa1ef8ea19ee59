"""
Tests for application wiring: ORM mapper configuration, router mounting and
the uvicorn entry point.
"""

from sqlalchemy.orm import configure_mappers

from leadrabbit import run_uvicorn
from leadrabbit.models import Customer, Engagement, Lead, Meeting, User
from leadrabbit.routers import MOUNT_ORDER


def test_all_mappers_configure():
    configure_mappers()

    assert Customer.webhook_links.property.mapper.class_.__name__ == "CustomerWebhook"
    assert User.google_calendar.property.uselist is False
    assert Lead.engagements.property.mapper.class_ is Engagement
    assert Lead.meetings.property.mapper.class_ is Meeting
    assert Meeting.lead.property.mapper.class_ is Lead


def test_every_router_is_mounted(app):
    paths = {route.path for route in app.routes}

    assert len(MOUNT_ORDER) == 9
    assert "/api/authenticate" in paths
    assert "/api/leads/{lead_id}/engagements" in paths
    assert "/api/google-calendar/callback" in paths
    assert "/webhook/99acres/{webhook_id}" in paths
    assert "/healthz" in paths


def test_run_uvicorn_reads_port_from_environment(monkeypatch):
    calls = []
    monkeypatch.setattr(run_uvicorn, "configure_logging", lambda: None)
    monkeypatch.setattr(run_uvicorn.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    monkeypatch.setenv("PORT", "8123")
    monkeypatch.delenv("WEB_CONCURRENCY", raising=False)

    run_uvicorn.main()

    target, kwargs = calls[0]
    assert target == "leadrabbit.main:app"
    assert kwargs["port"] == 8123
    assert kwargs["workers"] == 1
    assert kwargs["log_config"] is None
