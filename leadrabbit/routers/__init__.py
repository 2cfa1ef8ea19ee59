"""
HTTP routers, one module per resource.

`include_routers` mounts them on an app in MOUNT_ORDER; a module is only
imported when it is mounted or imported directly.
"""

from __future__ import annotations

import logging
from importlib import import_module
from typing import Tuple

from fastapi import FastAPI

logger = logging.getLogger("leadrabbit.routers")

# Session-authenticated APIs first, unauthenticated webhooks last.
MOUNT_ORDER: Tuple[str, ...] = (
    "auth",
    "leads",
    "engagements",
    "meetings",
    "google_calendar",
    "integrations",
    "admin",
    "settings",
    "webhooks",
)


def include_routers(app: FastAPI) -> None:
    for name in MOUNT_ORDER:
        module = import_module(f"{__name__}.{name}")
        app.include_router(module.router)
        logger.debug("Mounted %s router (%s)", name, module.router.prefix or "/")
