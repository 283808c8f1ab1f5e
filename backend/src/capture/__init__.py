"""
Captured call records supplied by the browser capture layer.
"""

from apiflow.capture.models import (
    CallRecord,
    Header,
    parse_headers,
    parse_timestamp,
    sort_by_time,
)

__all__ = [
    "CallRecord",
    "Header",
    "parse_headers",
    "parse_timestamp",
    "sort_by_time",
]
