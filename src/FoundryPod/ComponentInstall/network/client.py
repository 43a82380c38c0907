# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.network.client",
#   "purpose": "HTTPX client factory for manifest and artifact fetches.",
#   "sections": [
#     {
#       "id": "create-http-client",
#       "name": "create_http_client",
#       "anchor": "function-create-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTPX client factory.

The installer constructs one client per run and hands it to the content cache
explicitly; nothing here is a module-level singleton.  Tests pass an
``httpx.MockTransport`` through ``transport``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..settings import HttpSettings

logger = logging.getLogger("FoundryPod.ComponentInstall")


def create_http_client(
    settings: Optional[HttpSettings] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the HTTPX client used for one installer run.

    Configuration:
    - Timeouts: separate connect and read phases
    - Redirects: followed (release hosts redirect to CDN storage)
    - User-Agent: identifies the installer

    Args:
        settings: HTTP settings; defaults apply when omitted.
        transport: Optional transport override, e.g. ``httpx.MockTransport``.

    Returns:
        Configured ``httpx.Client``; the caller owns and closes it.
    """

    settings = settings or HttpSettings()
    client = httpx.Client(
        transport=transport,
        timeout=httpx.Timeout(
            connect=settings.timeout_connect,
            read=settings.timeout_read,
            write=settings.timeout_read,
            pool=settings.timeout_connect,
        ),
        follow_redirects=settings.follow_redirects,
        headers={"User-Agent": settings.user_agent},
    )
    logger.debug(
        "HTTPX client created",
        extra={"stage": "network", "follow_redirects": settings.follow_redirects},
    )
    return client


__all__ = ["create_http_client"]
