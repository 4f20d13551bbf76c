"""Embed origin checks for widgets."""

from typing import Iterable, Optional
from urllib.parse import urlsplit

import structlog

from ..domain.errors import DomainNotAllowed, WidgetInactive
from ..domain.models import Widget

logger = structlog.get_logger()

WILDCARD_PREFIX = "*."


def host_from_url(value: Optional[str]) -> Optional[str]:
    """Extract the lowercase host from an ``Origin`` or ``Referer`` value."""
    if not value:
        return None
    value = value.strip()
    if "://" not in value:
        value = f"//{value}"
    try:
        host = urlsplit(value).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def origin_host(origin: Optional[str], referer: Optional[str]) -> Optional[str]:
    """Embedding host, preferring ``Origin`` over ``Referer``."""
    return host_from_url(origin) or host_from_url(referer)


def domain_matches(pattern: str, host: str) -> bool:
    """Check one allow-list entry against a host.

    A ``*.`` entry matches hosts ending with the remainder, but only hosts with
    more than one dot, so ``*.partner.io`` does not admit ``partner.io``.
    """
    pattern = pattern.strip().lower()
    if pattern == host:
        return True
    if pattern.startswith(WILDCARD_PREFIX):
        suffix = pattern[len(WILDCARD_PREFIX):]
        return host.count(".") > 1 and host.endswith(suffix)
    return False


def is_domain_allowed(allowed_domains: Optional[Iterable[str]], host: Optional[str]) -> bool:
    """Apply an allow-list; an empty list allows every host."""
    patterns = [d for d in (allowed_domains or []) if d]
    if not patterns:
        return True
    if not host:
        return False
    host = host.lower()
    return any(domain_matches(pattern, host) for pattern in patterns)


def is_allowed(widget: Widget, host: Optional[str]) -> bool:
    """Whether ``host`` may embed ``widget``."""
    return is_domain_allowed(widget.allowed_domains, host)


def ensure_embeddable(widget: Widget, host: Optional[str]) -> None:
    """Raise unless the widget is active and the host is allowed."""
    if not widget.is_active:
        logger.warning("widget_inactive", widget_id=widget.id)
        raise WidgetInactive(widget.id)
    if not is_allowed(widget, host):
        logger.warning("embed_domain_rejected", widget_id=widget.id, host=host)
        raise DomainNotAllowed(widget.id, host)
