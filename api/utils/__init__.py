# Identity Reconciliation API Utilities
"""
Shared utility functions for identity reconciliation services.
"""

from api.utils.datetime_utils import make_aware, utc_now, format_timestamp, parse_timestamp

__all__ = ["make_aware", "utc_now", "format_timestamp", "parse_timestamp"]
