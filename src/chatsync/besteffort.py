"""Wrapper for advisory remote calls whose failures never reach the user."""

import logging
from collections.abc import Awaitable

import httpx

FORBIDDEN = 403


async def best_effort(
    operation: str,
    call: Awaitable[object],
    logger: logging.Logger | None = None,
) -> bool:
    """Await call, logging and swallowing data-service failures.

    Read receipts, typing pings and presence pings go through here. They are
    never retried: the next successful event corrects any stale state. A 403
    is handled like any other failure; no token refresh is attempted.

    Returns:
        True if the call succeeded.
    """
    log = logger or logging.getLogger("chatsync")
    try:
        await call
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        if status == FORBIDDEN:
            log.warning("%s rejected with 403, token may have expired", operation)
        else:
            log.warning("%s failed with HTTP %s", operation, status)
        return False
    except httpx.HTTPError as e:
        log.warning("%s failed: %s", operation, e)
        return False
    return True
