"""
Tests for services/assignment_service.py and the jobs CLI.

Covers:
- Stale heartbeat cleanup
- Round-robin assignment with the per-user cap and persisted pointer
- Assignment window in the tenant's local time zone
"""

import datetime

from sqlalchemy import select

from leadrabbit import jobs
from leadrabbit.models import Lead, User
from leadrabbit.models.tenant_setting import LEAD_ASSIGNMENT
from leadrabbit.schemas.settings import CronConfig
from leadrabbit.services.assignment_service import (
    assign_leads,
    in_assignment_window,
    local_hour,
    mark_stale_users_inactive,
)
from leadrabbit.services.settings_service import get_setting
from tests.conftest import ADMIN_EMAIL, AGENT_EMAIL, OTHER_AGENT_EMAIL

# 06:00 UTC is 11:30 in Asia/Kolkata.
IN_WINDOW = datetime.datetime(2024, 5, 10, 6, 0, 0)
# 14:00 UTC is 19:30 in Asia/Kolkata.
AFTER_WINDOW = datetime.datetime(2024, 5, 10, 14, 0, 0)

CONFIG = CronConfig(
    cron_start_hour=9,
    cron_end_hour=18,
    stale_heartbeat_minutes=30,
    inactivity_minutes=30,
)


def _set_online(db, *emails):
    for user in db.execute(select(User)).scalars():
        user.is_online = user.email in emails
        user.last_heartbeat = IN_WINDOW if user.is_online else None
    db.commit()


def _assignees(db):
    db.expire_all()
    return [lead.assigned_to for lead in db.execute(select(Lead).order_by(Lead.id)).scalars()]


# ============================================================
# Presence
# ============================================================

class TestStaleUsers:
    def test_old_and_missing_heartbeats_go_inactive(self, tenant_db):
        now = IN_WINDOW
        users = {u.email: u for u in tenant_db.execute(select(User)).scalars()}
        users[ADMIN_EMAIL].is_online = True
        users[ADMIN_EMAIL].last_heartbeat = now - datetime.timedelta(minutes=5)
        users[AGENT_EMAIL].is_online = True
        users[AGENT_EMAIL].last_heartbeat = now - datetime.timedelta(hours=2)
        users[OTHER_AGENT_EMAIL].is_online = True
        users[OTHER_AGENT_EMAIL].last_heartbeat = None
        tenant_db.commit()

        count = mark_stale_users_inactive(tenant_db, now=now, stale_minutes=30)

        assert count == 2
        tenant_db.expire_all()
        refreshed = {u.email: u for u in tenant_db.execute(select(User)).scalars()}
        assert refreshed[ADMIN_EMAIL].is_online is True
        assert refreshed[AGENT_EMAIL].is_online is False
        assert refreshed[AGENT_EMAIL].status == "inactive"
        assert refreshed[OTHER_AGENT_EMAIL].is_online is False

    def test_offline_users_are_untouched(self, tenant_db):
        assert mark_stale_users_inactive(tenant_db, now=IN_WINDOW, stale_minutes=30) == 0


# ============================================================
# Assignment window
# ============================================================

class TestWindow:
    def test_local_hour_uses_time_zone(self):
        assert local_hour(IN_WINDOW, "Asia/Kolkata") == 11
        assert local_hour(IN_WINDOW, "UTC") == 6

    def test_window_bounds(self):
        assert in_assignment_window(IN_WINDOW, CONFIG, "Asia/Kolkata") is True
        assert in_assignment_window(AFTER_WINDOW, CONFIG, "Asia/Kolkata") is False

    def test_outside_window_assigns_nothing(self, tenant_db, make_lead):
        make_lead()
        _set_online(tenant_db, AGENT_EMAIL)

        result = assign_leads(tenant_db, now=AFTER_WINDOW, config=CONFIG)

        assert result.assigned == 0
        assert result.skipped_reason == "outside assignment window"
        assert _assignees(tenant_db) == [None]


# ============================================================
# Round robin
# ============================================================

class TestRoundRobin:
    def test_batches_per_user_and_pointer_carries_over(self, tenant_db, make_lead):
        for _ in range(5):
            make_lead()
        _set_online(tenant_db, AGENT_EMAIL, OTHER_AGENT_EMAIL)

        result = assign_leads(tenant_db, now=IN_WINDOW, config=CONFIG)

        # Two users, five leads: three each at most.
        assert result.assigned == 5
        assert _assignees(tenant_db) == [AGENT_EMAIL] * 3 + [OTHER_AGENT_EMAIL] * 2

        pointer = get_setting(tenant_db, LEAD_ASSIGNMENT).value
        assert pointer["lastAssignedIndex"] == 1
        assert pointer["lastAssignedUser"] == OTHER_AGENT_EMAIL

        make_lead()
        make_lead()
        result = assign_leads(tenant_db, now=IN_WINDOW, config=CONFIG)

        assert result.assigned == 2
        assert _assignees(tenant_db)[5:] == [AGENT_EMAIL, OTHER_AGENT_EMAIL]

    def test_per_user_cap_leaves_remainder_unassigned(self, tenant_db, make_lead):
        for _ in range(20):
            make_lead()
        _set_online(tenant_db, AGENT_EMAIL, OTHER_AGENT_EMAIL)

        result = assign_leads(tenant_db, now=IN_WINDOW, config=CONFIG)

        assignees = _assignees(tenant_db)
        assert result.assigned == 8
        assert assignees.count(AGENT_EMAIL) == 4
        assert assignees.count(OTHER_AGENT_EMAIL) == 4
        assert assignees.count(None) == 12

    def test_already_assigned_leads_are_left_alone(self, tenant_db, make_lead):
        make_lead(assigned_to=OTHER_AGENT_EMAIL)
        make_lead()
        _set_online(tenant_db, AGENT_EMAIL)

        assign_leads(tenant_db, now=IN_WINDOW, config=CONFIG)

        assert _assignees(tenant_db) == [OTHER_AGENT_EMAIL, AGENT_EMAIL]

    def test_no_online_users_is_skipped(self, tenant_db, make_lead):
        make_lead()

        result = assign_leads(tenant_db, now=IN_WINDOW, config=CONFIG)

        assert result.skipped_reason == "no online users"
        assert _assignees(tenant_db) == [None]


# ============================================================
# Jobs CLI
# ============================================================

class TestJobs:
    def test_stale_job_runs_across_tenants(self, tenant, tenant_db):
        users = {u.email: u for u in tenant_db.execute(select(User)).scalars()}
        users[AGENT_EMAIL].is_online = True
        users[AGENT_EMAIL].last_heartbeat = None
        tenant_db.commit()

        assert jobs.main(["stale"]) == 0

        tenant_db.expire_all()
        assert tenant_db.get(User, users[AGENT_EMAIL].id).is_online is False
