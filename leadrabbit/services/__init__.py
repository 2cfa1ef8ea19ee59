"""Service layer: tenant routing, auth, lead store, calendar and cron-invoked work."""
