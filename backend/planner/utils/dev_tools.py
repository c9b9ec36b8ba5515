"""Gating for developer tooling.

Dev endpoints only run when the service is configured for development,
and the dev-tools link is only offered to browsers on a local host.
"""

from __future__ import annotations

from typing import Optional

from ..config import settings
from ..errors import Forbidden

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


def _strip_port(host: str) -> str:
    host = (host or "").strip().lower()
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host


def is_production_host(host: Optional[str]) -> bool:
    hostname = _strip_port(host or "")
    domain = settings.PRODUCTION_DOMAIN
    return hostname == domain or hostname.endswith("." + domain)


def is_dev_host(host: Optional[str]) -> bool:
    """True for localhost, 127.0.0.1 and `.local` hosts, never for production."""
    hostname = _strip_port(host or "")
    if not hostname or is_production_host(hostname):
        return False
    return hostname in _LOCAL_HOSTS or ".local" in hostname


def dev_tools_visible(host: Optional[str]) -> bool:
    return settings.is_development and is_dev_host(host)


def require_development() -> None:
    """Raise `Forbidden` unless the service runs in development."""
    if not settings.is_development:
        raise Forbidden("Not available in production")
