# Router aggregation.
# Created: 2026-03-05
#
# mount_v1_routers(app) registers the protocol and administration routers.
# The OAuth endpoints keep their conventional unprefixed paths (/oauth/...).

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("pawauth.api.v1.oauth2", "router", "OAuth2"),
    ("pawauth.api.v1.applications", "router", "Applications"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all routers on *app*. Import failures are fatal at startup."""
    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name))
        logger.debug("Mounted router: %s (%s)", module_path, tag)
