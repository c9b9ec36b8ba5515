"""UTM attribution capture.

Landing-page requests that carry campaign parameters get a short-lived
cookie holding those parameters. Once the visitor signs in, the
attribution endpoint copies the values onto their user record and clears
the cookie.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Mapping, Optional

from fastapi import Request, Response

from ..config import settings

UTM_COOKIE_NAME = "reviseme_utm"
UTM_COOKIE_MAX_AGE = 7 * 24 * 60 * 60
UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign")

# static assets and API routes never carry a landing page
_EXCLUDED_PATH = re.compile(
    r"^/(?:api(?:/|$)|static/|_next/static|_next/image|favicon\.ico)"
    r"|\.(?:svg|png|jpg|jpeg|gif|webp)$",
    re.IGNORECASE,
)

logger = logging.getLogger("planner.utm")


def path_is_tracked(path: str) -> bool:
    """Return True when `path` is a page request the middleware should inspect."""
    return not _EXCLUDED_PATH.search(path or "/")


def extract_utm(params: Mapping[str, str]) -> Optional[dict]:
    """Return the UTM payload for `params`, or None if no UTM value is present.

    Missing or empty parameters are reported as None.
    """
    values = {name: (params.get(name) or None) for name in UTM_PARAMS}
    if not any(values.values()):
        return None
    return values


def parse_utm_cookie(raw: Optional[str]) -> Optional[dict]:
    """Decode the cookie written by the middleware; None if absent or unusable."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    return extract_utm({name: data.get(name) for name in UTM_PARAMS})


def _cookie_kwargs() -> dict:
    return {
        "path": "/",
        "samesite": "lax",
        "secure": settings.is_production,
        "httponly": True,
    }


def set_utm_cookie(response: Response, utm: dict) -> None:
    response.set_cookie(
        UTM_COOKIE_NAME,
        json.dumps(utm, separators=(",", ":")),
        max_age=UTM_COOKIE_MAX_AGE,
        **_cookie_kwargs(),
    )


def clear_utm_cookie(response: Response) -> None:
    response.set_cookie(UTM_COOKIE_NAME, "", max_age=0, **_cookie_kwargs())


async def utm_capture_middleware(request: Request, call_next):
    response = await call_next(request)
    if not path_is_tracked(request.url.path):
        return response
    utm = extract_utm(request.query_params)
    if utm is not None:
        set_utm_cookie(response, utm)
        logger.debug("captured utm on %s: %s", request.url.path, utm)
    return response
