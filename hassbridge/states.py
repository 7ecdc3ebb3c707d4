"""One-shot REST fetch of current entity states, used to seed the player at startup."""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from .errors import StatesFetchError
from .messages import StateSnapshot

log = logging.getLogger(__name__)


async def fetch_states(
    base_url: str,
    token: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
) -> List[StateSnapshot]:
    """
    GET {base_url}/api/states and return every entity as a snapshot.
    Non-2xx responses and undecodable bodies raise StatesFetchError; no retry.
    """
    url = base_url.rstrip("/") + "/api/states"
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    cli = client or httpx.AsyncClient(timeout=timeout)
    try:
        resp = await cli.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise StatesFetchError(f"request to {url} failed: {exc!r}") from exc
    finally:
        if client is None:
            await cli.aclose()

    if not resp.is_success:
        raise StatesFetchError(f"GET {url} returned HTTP {resp.status_code}")
    try:
        body = resp.json()
    except ValueError as exc:
        raise StatesFetchError(f"decode states from {url} failed: {exc}") from exc
    if not isinstance(body, list):
        raise StatesFetchError(f"expected a JSON array from {url}, got {type(body).__name__}")

    states = [StateSnapshot.from_state(st) for st in body if isinstance(st, dict)]
    log.debug("fetched %d entity states", len(states))
    return states
