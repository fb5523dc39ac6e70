"""Cache key naming.

Keys follow ``resource:qualifier:qualifier...``. Identical logical queries
always produce identical keys: keyword parameters are emitted in sorted order
and ``None`` is spelled ``all``. Components are escaped so ``:`` inside a
value can never merge two different queries into one key.
"""

import json
from typing import Any, Optional

NAMESPACE = "api"


def _component(value: Any) -> str:
    if value is None:
        text = "all"
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (dict, list, tuple)):
        text = json.dumps(value, sort_keys=True, separators=(",", ":"))
    else:
        text = str(value)
    return text.replace("%", "%25").replace(":", "%3A")


def build_key(resource: str, *qualifiers: Any, **params: Any) -> str:
    """Build a cache key.

    >>> build_key("api", "devices", page=2, limit=50, status=None)
    'api:devices:limit:50:page:2:status:all'
    """
    parts = [_component(resource)]
    parts.extend(_component(q) for q in qualifiers)
    for name in sorted(params):
        parts.append(_component(name))
        parts.append(_component(params[name]))
    return ":".join(parts)


def record_key(object_key: str, options: Optional[dict[str, Any]] = None) -> str:
    """Key for a records query against one upstream object."""
    return build_key(NAMESPACE, "records", object_key, **(options or {}))


def record_prefix(object_key: str) -> str:
    """Prefix shared by every cached query against one upstream object."""
    return build_key(NAMESPACE, "records", object_key)


class CacheKeys:
    """Named keys for the dashboard's aggregate views."""

    metrics = build_key(NAMESPACE, "metrics", "v1")
    devices = build_key(NAMESPACE, "devices", "all")
    partners = build_key(NAMESPACE, "partners", "all")
    donations = build_key(NAMESPACE, "donations", "all")
    activity = build_key(NAMESPACE, "activity", "recent")
    organizations = build_key(NAMESPACE, "organizations", "all")

    @staticmethod
    def devices_paginated(page: int, limit: int, status: Optional[str] = None) -> str:
        return build_key(NAMESPACE, "devices", "page", page, "limit", limit, "status", status)

    @staticmethod
    def partnerships(filter: str = "all") -> str:
        return build_key(NAMESPACE, "partnerships", filter)

    @staticmethod
    def recipients(filter: str = "all") -> str:
        return build_key(NAMESPACE, "recipients", filter)
