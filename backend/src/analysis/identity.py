"""
URL parsing and identity keys.

Endpoint identifiers (``origin + path + ":" + METHOD``) key repeated
observations of the same dependency; workflow ids key repeated detections
of the same workflow.
"""

from __future__ import annotations

import re
from urllib.parse import SplitResult, urlsplit

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}

_NUMERIC_SEGMENT = re.compile(r"/\d+")


def parse_url(url: str) -> SplitResult | None:
    """Parse an absolute URL, returning None when it is not usable."""
    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    return parts


def url_origin(url: str) -> str | None:
    """``scheme://host[:port]`` with the default port dropped."""
    parts = parse_url(url)
    if parts is None:
        return None
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def url_path(url: str) -> str | None:
    """Path component of the URL, ``/`` when empty."""
    parts = parse_url(url)
    if parts is None:
        return None
    return parts.path or "/"


def path_segments(url: str) -> list[str] | None:
    """Non-empty path segments, or None when the URL is unparseable."""
    path = url_path(url)
    if path is None:
        return None
    return [segment for segment in path.split("/") if segment]


def path_template(url: str) -> str | None:
    """Path with numeric segments replaced by ``:id``."""
    path = url_path(url)
    if path is None:
        return None
    return _NUMERIC_SEGMENT.sub("/:id", path)


def endpoint_id(url: str, method: str) -> str:
    """
    Identity of an endpoint: origin, path and method.

    Raises:
        ValueError: If the URL cannot be parsed.
    """
    origin = url_origin(url)
    path = url_path(url)
    if origin is None or path is None:
        raise ValueError(f"Cannot derive endpoint id from URL: {url!r}")
    return f"{origin}{path}:{method.upper()}"


def dependency_id(from_endpoint_id: str, to_endpoint_id: str) -> str:
    return f"{from_endpoint_id}->{to_endpoint_id}"


def normalize_workflow_name(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip()).lower()


def workflow_id(base_url: str, name: str) -> str:
    return f"{base_url}:{normalize_workflow_name(name)}"
