"""
Cron entry points, one subcommand per job, each run across every active tenant:

    python -m leadrabbit.jobs sync      # pull 99acres windows
    python -m leadrabbit.jobs assign    # round-robin unassigned leads
    python -m leadrabbit.jobs stale     # mark users without heartbeats inactive

A tenant that fails is logged and skipped; the exit code is non-zero when any
tenant failed.
"""

from __future__ import annotations

import argparse
import logging
from typing import Callable, List, Optional

from dotenv import load_dotenv

from leadrabbit.db import open_registry_session
from leadrabbit.ingestion import acres99
from leadrabbit.logging_config import configure_logging
from leadrabbit.services.assignment_service import assign_leads, mark_stale_users_inactive
from leadrabbit.services.tenants_service import TenantHandle, list_active_tenants

logger = logging.getLogger("leadrabbit.jobs")


def _active_tenants() -> List[TenantHandle]:
    registry = open_registry_session()
    try:
        return list_active_tenants(registry)
    finally:
        registry.close()


def _for_each_tenant(job: str, work: Callable[[TenantHandle], None]) -> int:
    failures = 0
    for tenant in _active_tenants():
        try:
            work(tenant)
        except Exception as exc:
            failures += 1
            logger.error("%s job failed for tenant %s: %s", job, tenant.label, exc, exc_info=True)
    return failures


def run_sync() -> int:
    totals = {"leads": 0, "accounts": 0, "failed": 0}

    client = acres99.build_http_client()
    try:
        def work(tenant: TenantHandle) -> None:
            result, synced, failed = acres99.sync_tenant(tenant, client)
            totals["leads"] += result.leads_processed
            totals["accounts"] += synced
            totals["failed"] += len(failed)

        failures = _for_each_tenant("sync", work)
    finally:
        client.close()

    logger.info(
        "99acres sync finished: %d new lead(s) from %d account(s), %d account(s) failed",
        totals["leads"],
        totals["accounts"],
        totals["failed"],
    )
    return failures + totals["failed"]


def run_assign() -> int:
    def work(tenant: TenantHandle) -> None:
        db = tenant.open_session()
        try:
            result = assign_leads(db)
        finally:
            db.close()
        if result.skipped_reason:
            logger.info("Assignment skipped for %s: %s", tenant.label, result.skipped_reason)

    return _for_each_tenant("assign", work)


def run_stale() -> int:
    def work(tenant: TenantHandle) -> None:
        db = tenant.open_session()
        try:
            mark_stale_users_inactive(db)
        finally:
            db.close()

    return _for_each_tenant("stale", work)


JOBS = {
    "sync": run_sync,
    "assign": run_assign,
    "stale": run_stale,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run LeadRabbit scheduled jobs.")
    parser.add_argument("job", choices=sorted(JOBS), help="Job to run across all active tenants.")
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging()

    failures = JOBS[args.job]()
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
